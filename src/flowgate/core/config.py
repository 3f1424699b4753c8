"""Service configuration loaded from the environment."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def _int_from_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got '{raw}'") from None


@dataclass
class ServiceConfig:
    """Configuration for the flowgate service.

    Attributes:
        bot_name: Name the bot answers to in ``@<bot_name> <command>`` comments
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        host: Interface the webhook server binds to
        port: Port the webhook server listens on
        cascade_workers: Maximum concurrent child updates during a cascade
        substrate_workers: Maximum concurrent phase runs
        taxonomy_dir: Optional directory of per-project taxonomy JSON files
        generator_command: Command that produces phase content
        generator_timeout: Timeout in seconds for one generation
        log_file: Optional path of a rotating log file
    """

    bot_name: str = "flowgate"
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 8000
    cascade_workers: int = 8
    substrate_workers: int = 4
    taxonomy_dir: Optional[Path] = None
    generator_command: Optional[str] = None
    generator_timeout: int = 600
    log_file: Optional[str] = None

    def __post_init__(self):
        """Validate configuration values."""
        if not self.bot_name or not self.bot_name.strip():
            raise ValueError("bot_name cannot be empty")
        self.bot_name = self.bot_name.strip().lstrip("@").lower()

        if not 0 < self.port < 65536:
            raise ValueError("port must be between 1 and 65535")

        if self.cascade_workers <= 0:
            raise ValueError("cascade_workers must be positive")

        if self.substrate_workers <= 0:
            raise ValueError("substrate_workers must be positive")

        if self.generator_timeout <= 0:
            raise ValueError("generator_timeout must be positive")

        if self.log_level.upper() not in VALID_LOG_LEVELS:
            raise ValueError(f"log_level must be one of {VALID_LOG_LEVELS}")

        # Normalize log level to uppercase
        self.log_level = self.log_level.upper()

        if self.taxonomy_dir is not None:
            self.taxonomy_dir = Path(self.taxonomy_dir)

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> "ServiceConfig":
        """Build a configuration from ``FLOWGATE_*`` environment variables.

        Args:
            dotenv_path: Optional path to a specific .env file to load first.
        """
        load_dotenv(dotenv_path=dotenv_path)

        taxonomy_dir = os.environ.get("FLOWGATE_TAXONOMY_DIR")
        return cls(
            bot_name=os.environ.get("FLOWGATE_BOT_NAME", "flowgate"),
            log_level=os.environ.get("FLOWGATE_LOG_LEVEL", "INFO"),
            host=os.environ.get("FLOWGATE_HOST", "0.0.0.0"),
            port=_int_from_env("FLOWGATE_PORT", 8000),
            cascade_workers=_int_from_env("FLOWGATE_CASCADE_WORKERS", 8),
            substrate_workers=_int_from_env("FLOWGATE_SUBSTRATE_WORKERS", 4),
            taxonomy_dir=Path(taxonomy_dir) if taxonomy_dir else None,
            generator_command=os.environ.get("FLOWGATE_GENERATOR_COMMAND") or None,
            generator_timeout=_int_from_env("FLOWGATE_GENERATOR_TIMEOUT", 600),
            log_file=os.environ.get("FLOWGATE_LOG_FILE") or None,
        )
