"""
order_config -- single public entrypoint for runtime configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration
    files or environment variables directly.

Architecture position:
    Configuration.  This package sits above ``order_kernel`` and below
    ``order_api`` and the operator scripts.  The kernel MUST NEVER import
    from ``order_config``; ``order_config.bridges`` translates the loaded
    configuration into a kernel ``KernelSettings``.

Invariants enforced:
    - Single entrypoint: all runtime config flows through ``get_active_config()``.
    - Secrets (API keys, webhook signing secret, database URL) come from
      the environment only.
    - Producer costs are integer cents.

Failure modes:
    - ``FileNotFoundError`` -- the requested configuration set does not exist.
    - ``ConfigurationError`` -- a value failed validation.

Audit relevance:
    Every successful ``get_active_config()`` call emits an
    ``order_config_loaded`` log entry naming the source file and the
    producers configured, without secret values.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Mapping

from order_config.loader import load_config_file
from order_config.schema import OrderKernelConfig
from order_kernel.logging_config import get_logger

logger = get_logger("config")

_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"
DEFAULT_CONFIG_NAME = "default"


def get_active_config(
    config_name: str = DEFAULT_CONFIG_NAME,
    config_dir: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> OrderKernelConfig:
    """The ONLY public configuration entrypoint.

    Contract:
        Reads ``{config_dir}/{config_name}.yaml`` and resolves every
        ``*_env`` key against ``environ`` (``os.environ`` when omitted).

    Non-goals:
        - No caching across calls; callers hold the returned value.

    Raises:
        FileNotFoundError: If the configuration set does not exist.
        ConfigurationError: If validation fails.
    """
    sets_dir = config_dir or _DEFAULT_CONFIG_DIR
    path = sets_dir / f"{config_name}.yaml"
    if not path.exists():
        raise FileNotFoundError(f"No configuration set '{config_name}' in {sets_dir}")

    config = load_config_file(path, os.environ if environ is None else environ)

    logger.info(
        "order_config_loaded",
        extra={
            "source": config.source,
            "producers": [
                {"slug": p.slug, "api_mode": bool(p.api_url and p.api_key)}
                for p in config.producers
            ],
            "sku_count": len(config.producer_costs),
            "webhook_secret_configured": config.webhooks.signing_secret is not None,
            "mail_api_configured": config.mail.api_key is not None,
        },
    )
    return config


__all__ = ["OrderKernelConfig", "get_active_config"]
