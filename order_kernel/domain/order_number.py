"""Human-readable order numbers: ``{prefix}-{YYYYMMDD}-{XXXX}``."""

import secrets
import string
from datetime import datetime

_SUFFIX_ALPHABET = string.digits + string.ascii_uppercase
SUFFIX_LENGTH = 4


def generate_order_number(prefix: str, now: datetime) -> str:
    """
    Date-stamped order number with a random base-36 suffix.

    Collisions are possible in principle; the unique constraint on
    ``orders.order_number`` is the actual guarantee.
    """
    suffix = "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(SUFFIX_LENGTH))
    return f"{prefix}-{now:%Y%m%d}-{suffix}"
