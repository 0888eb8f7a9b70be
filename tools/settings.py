import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv
from loguru import logger


@dataclass(frozen=True)
class Settings:
    """Process configuration, built once at startup and passed explicitly."""

    port: int = 8080
    host: str = "0.0.0.0"
    api_key: Optional[str] = None
    manifest_dir: str = "./manifests"
    callback_timeout: float = 20.0
    log_file: Optional[str] = "logs/app.log"
    log_level: str = "INFO"

    @property
    def auth_enabled(self) -> bool:
        return bool(self.api_key)

    @classmethod
    def from_env(cls) -> "Settings":
        """Load settings from the environment (and a local .env file)."""
        load_dotenv()

        port = os.getenv("PORT", "8080")
        try:
            port = int(port)
        except ValueError:
            logger.warning(f"Invalid PORT value {port!r}, falling back to 8080")
            port = 8080

        timeout = os.getenv("CALLBACK_TIMEOUT", "20")
        try:
            timeout = float(timeout)
        except ValueError:
            logger.warning(f"Invalid CALLBACK_TIMEOUT value {timeout!r}, falling back to 20s")
            timeout = 20.0

        settings = cls(
            port=port,
            host=os.getenv("HOST", "0.0.0.0"),
            api_key=os.getenv("API_KEY") or None,
            manifest_dir=os.getenv("MANIFEST_DIR", "./manifests"),
            callback_timeout=timeout,
            log_file=os.getenv("LOG_FILE", "logs/app.log") or None,
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )

        if not settings.auth_enabled:
            logger.warning("No API_KEY configured, POST endpoints are unauthenticated")

        return settings
