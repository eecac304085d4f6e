import os
import logging
import sys

import structlog

from exceptions import ConfigurationError

logger = logging.getLogger("common_ground")


def get_logger(name: str = "common_ground"):
    """Get a structured logger instance

    Usage:
        logger = get_logger(__name__)
        logger = logger.bind(component="viewpoint_clusterer", area_id="area-p1")
        logger.info("clustered participants", n_participants=40, n_clusters=3)

    Args:
        name: Logger name (typically __name__ or module path)

    Returns:
        Structured logger instance with context binding support
    """
    return structlog.get_logger(name)


class Config:
    """Environment defaults for the common ground engine

    These are process-wide defaults only. Every analysis run receives an
    explicit AnalysisConfig (see deliberation.models); engine code never reads
    this object for thresholds.
    """

    def __init__(self):
        # Clustering and classification thresholds
        self.COHESION_THRESHOLD = self._float_env("COMMON_GROUND_COHESION_THRESHOLD", "0.75")
        self.VISIBILITY_THRESHOLD = self._float_env("COMMON_GROUND_VISIBILITY_THRESHOLD", "0.20")
        self.NUANCE_THRESHOLD = self._float_env("COMMON_GROUND_NUANCE_THRESHOLD", "0.35")
        self.NEUTRAL_BAND = self._float_env("COMMON_GROUND_NEUTRAL_BAND", "0.15")
        self.NEUTRAL_WEIGHT = self._float_env("COMMON_GROUND_NEUTRAL_WEIGHT", "0.5")

        # Keyword similarity for grouping propositions without an explicit area
        self.AREA_SIMILARITY_THRESHOLD = self._float_env("COMMON_GROUND_AREA_SIMILARITY", "0.2")

        # Area fan-out (1 = sequential)
        self.MAX_WORKERS = self._int_env("COMMON_GROUND_MAX_WORKERS", "4")

        # Logging
        self.LOG_LEVEL = os.getenv("COMMON_GROUND_LOG_LEVEL", "INFO").upper()
        self.DEBUG = os.getenv("COMMON_GROUND_DEBUG", "false").lower() == "true"

        # Validate configuration
        self._validate()

    def _float_env(self, key: str, default: str) -> float:
        raw = os.getenv(key, default)
        try:
            return float(raw)
        except ValueError:
            raise ConfigurationError(f"{key} must be a number, got {raw!r}", config_key=key)

    def _int_env(self, key: str, default: str) -> int:
        raw = os.getenv(key, default)
        try:
            return int(raw)
        except ValueError:
            raise ConfigurationError(f"{key} must be an integer, got {raw!r}", config_key=key)

    def _validate(self):
        """Validate configuration values"""
        unit_interval = {
            "COMMON_GROUND_COHESION_THRESHOLD": self.COHESION_THRESHOLD,
            "COMMON_GROUND_VISIBILITY_THRESHOLD": self.VISIBILITY_THRESHOLD,
            "COMMON_GROUND_NUANCE_THRESHOLD": self.NUANCE_THRESHOLD,
            "COMMON_GROUND_NEUTRAL_WEIGHT": self.NEUTRAL_WEIGHT,
            "COMMON_GROUND_AREA_SIMILARITY": self.AREA_SIMILARITY_THRESHOLD,
        }
        for key, value in unit_interval.items():
            if not 0.0 <= value <= 1.0:
                raise ConfigurationError(f"{key} must be between 0 and 1", config_key=key)

        if not 0.0 <= self.NEUTRAL_BAND < 1.0:
            raise ConfigurationError(
                "COMMON_GROUND_NEUTRAL_BAND must be in [0, 1)",
                config_key="COMMON_GROUND_NEUTRAL_BAND",
            )

        if self.MAX_WORKERS <= 0:
            raise ConfigurationError(
                "COMMON_GROUND_MAX_WORKERS must be positive",
                config_key="COMMON_GROUND_MAX_WORKERS",
            )

    def is_development(self) -> bool:
        """Check if running in development mode"""
        return self.DEBUG

    def summary(self) -> dict:
        """Get a summary of current configuration"""
        return {
            "cohesion_threshold": self.COHESION_THRESHOLD,
            "visibility_threshold": self.VISIBILITY_THRESHOLD,
            "nuance_threshold": self.NUANCE_THRESHOLD,
            "neutral_band": self.NEUTRAL_BAND,
            "neutral_weight": self.NEUTRAL_WEIGHT,
            "area_similarity_threshold": self.AREA_SIMILARITY_THRESHOLD,
            "max_workers": self.MAX_WORKERS,
            "log_level": self.LOG_LEVEL,
            "is_development": self.is_development(),
        }


def configure_structlog(is_development: bool = False, log_level: str = "INFO"):
    """Configure structlog for structured logging

    Args:
        is_development: If True, use human-readable console output. If False, use JSON.
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    # Convert log level string to logging constant
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    # Shared processors for all modes
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
    ]

    if is_development:
        # Development: Simple key-value output without padding
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.KeyValueRenderer(key_order=["event"], drop_missing=True),
        ]
    else:
        # Production: JSON output for log aggregation
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=numeric_level,
    )


# Global configuration instance
config = Config()

# Configure structured logging
configure_structlog(
    is_development=config.is_development(),
    log_level=config.LOG_LEVEL
)
