"""FastAPI application factory."""

from fastapi import FastAPI

from order_api.routers import health, webhooks
from order_api.runtime import Runtime, build_runtime
from order_config import get_active_config
from order_kernel import __version__


def create_app(runtime: Runtime | None = None, config_name: str = "default") -> FastAPI:
    """
    Build the app around ``runtime``.

    Without a runtime one is built from the named configuration set, which
    reads the database URL and secrets from the environment.
    """
    if runtime is None:
        runtime = build_runtime(get_active_config(config_name))

    app = FastAPI(title="Order Kernel", version=__version__)
    app.state.runtime = runtime
    app.include_router(health.router)
    app.include_router(webhooks.router)
    return app
