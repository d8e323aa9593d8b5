"""
order_api -- HTTP surface of the order kernel.

Exposes the signed payment-webhook endpoint and a health check.  All
business behaviour lives in ``order_kernel``; this package only verifies,
decodes and maps results to HTTP status codes.
"""

from order_api.app import create_app
from order_api.runtime import Runtime, build_runtime

__all__ = ["Runtime", "build_runtime", "create_app"]
