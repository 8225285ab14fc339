import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

PACKAGE_LOGGER = "common_metrics"


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    score_prefix: str
    cluster_column: str
    confidence: float
    max_equity_groups: int
    reml: bool
    max_iter: int
    catalog_path: Optional[str]
    log_level: str


def load_settings() -> Settings:
    """
    Build settings from environment variables (a local .env is loaded at import).
    """
    confidence = float(os.getenv("COMMON_METRICS_CONFIDENCE", "0.95"))
    if not 0 < confidence < 1:
        raise ValueError(f"COMMON_METRICS_CONFIDENCE must be between 0 and 1, got {confidence}")

    return Settings(
        score_prefix=os.getenv("COMMON_METRICS_SCORE_PREFIX", "cm"),
        cluster_column=os.getenv("COMMON_METRICS_CLUSTER_COLUMN", "class_id"),
        confidence=confidence,
        max_equity_groups=int(os.getenv("COMMON_METRICS_MAX_EQUITY_GROUPS", "5")),
        reml=_env_bool("COMMON_METRICS_REML", "true"),
        max_iter=int(os.getenv("COMMON_METRICS_MAX_ITER", "200")),
        catalog_path=os.getenv("COMMON_METRICS_CATALOG_PATH") or None,
        log_level=os.getenv("COMMON_METRICS_LOG_LEVEL", "WARNING").upper(),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()


def configure_logging(level: Optional[str] = None) -> logging.Logger:
    """Apply the configured log level to the package logger and return it."""
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level or get_settings().log_level)
    if not logger.handlers:
        logger.addHandler(logging.NullHandler())
    return logger
