"""
billing_config -- runtime configuration for the billing engine.

Responsibility:
    Provides ``BillingConfig`` and the single runtime entrypoint
    ``get_active_config()``.  Services receive a BillingConfig through their
    constructor; they never read files or environment variables themselves.

Architecture position:
    Configuration.  Sits above ``billing_kernel`` and below
    ``billing_services``.  The kernel and engines never import from here.

Failure modes:
    - ``ValueError`` -- a setting is out of range or of the wrong kind.
    - ``FileNotFoundError`` -- BILLING_CONFIG names a missing file.
    - ``yaml.YAMLError`` -- the file is not valid YAML.
"""

from billing_config.loader import (
    CONFIG_ENV_VAR,
    DATABASE_URL_ENV_VAR,
    BillingConfig,
    get_active_config,
    load_config,
)

__all__ = [
    "BillingConfig",
    "CONFIG_ENV_VAR",
    "DATABASE_URL_ENV_VAR",
    "get_active_config",
    "load_config",
]
