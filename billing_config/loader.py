"""
BillingConfig and its YAML loader.

YAML layout (either form is accepted):

    billing:
      database_url: postgresql://app@localhost/daycare
      batch_size: 10
      max_workers: 4
      value_tolerance: "0.01"
      skip_weekends_on_fill: true
      log_level: INFO

or the same keys at the top level.
"""

import logging
import os
from dataclasses import dataclass, fields, replace
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Self

import yaml

from billing_kernel.logging_config import get_logger

logger = get_logger("config")

CONFIG_ENV_VAR = "BILLING_CONFIG"
DATABASE_URL_ENV_VAR = "BILLING_DATABASE_URL"

VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class BillingConfig:
    """
    Billing engine settings.

    batch_size bounds how many writes a bulk operation issues per batch;
    max_workers is how many of those run at once when each task can open
    its own session.
    """

    database_url: str | None = None
    batch_size: int = 10
    max_workers: int = 1
    value_tolerance: Decimal = Decimal("0.01")
    skip_weekends_on_fill: bool = True
    log_level: str = "INFO"

    def __post_init__(self):
        if isinstance(self.value_tolerance, (int, float, str)) and not isinstance(
            self.value_tolerance, bool
        ):
            try:
                self.value_tolerance = Decimal(str(self.value_tolerance))
            except InvalidOperation:
                raise ValueError(
                    f"value_tolerance must be a number, got '{self.value_tolerance}'"
                ) from None
        if not isinstance(self.value_tolerance, Decimal) or self.value_tolerance < 0:
            raise ValueError("value_tolerance must be a non-negative number")
        if not isinstance(self.batch_size, int) or isinstance(self.batch_size, bool) or self.batch_size < 1:
            raise ValueError(f"batch_size must be an integer >= 1, got '{self.batch_size}'")
        if not isinstance(self.max_workers, int) or isinstance(self.max_workers, bool) or self.max_workers < 1:
            raise ValueError(f"max_workers must be an integer >= 1, got '{self.max_workers}'")
        if self.max_workers > self.batch_size:
            raise ValueError(
                f"max_workers ({self.max_workers}) must not exceed batch_size ({self.batch_size})"
            )
        self.log_level = str(self.log_level).upper()
        if self.log_level not in VALID_LOG_LEVELS:
            raise ValueError(
                f"log_level must be one of {VALID_LOG_LEVELS}, got '{self.log_level}'"
            )

    @property
    def log_level_number(self) -> int:
        return logging.getLevelName(self.log_level)

    @classmethod
    def with_defaults(cls) -> Self:
        """Create config with default settings."""
        logger.info("billing_config_created_with_defaults")
        return cls()

    @classmethod
    def from_dict(cls, data: dict) -> Self:
        """
        Create config from a mapping (e.g. a parsed YAML file).

        Raises:
            ValueError: On unknown keys or invalid values.
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown billing config keys: {unknown}")
        logger.info(
            "billing_config_loading_from_dict",
            extra={"keys": sorted(data.keys())},
        )
        return cls(**data)


def load_config(path: Path | str) -> BillingConfig:
    """
    Load a BillingConfig from a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist.
        yaml.YAMLError: If the file contains invalid YAML.
        ValueError: If the content is not a mapping or fails validation.
    """
    path = Path(path)
    with open(path) as f:
        raw: Any = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"Billing config {path} must contain a mapping")
    section = raw.get("billing", raw)
    if not isinstance(section, dict):
        raise ValueError(f"'billing' section of {path} must be a mapping")
    return BillingConfig.from_dict(dict(section))


def get_active_config(environ: dict[str, str] | None = None) -> BillingConfig:
    """
    The runtime configuration entrypoint.

    Reads the file named by ``BILLING_CONFIG`` when set, else defaults.
    ``BILLING_DATABASE_URL`` overrides ``database_url``.
    """
    env = os.environ if environ is None else environ
    config_path = env.get(CONFIG_ENV_VAR)
    config = load_config(config_path) if config_path else BillingConfig.with_defaults()

    database_url = env.get(DATABASE_URL_ENV_VAR)
    if database_url:
        config = replace(config, database_url=database_url)

    logger.info(
        "billing_config_activated",
        extra={
            "source": config_path or "defaults",
            "batch_size": config.batch_size,
            "max_workers": config.max_workers,
            "has_database_url": config.database_url is not None,
        },
    )
    return config
