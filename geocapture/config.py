import os
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Resolve to the project root (one level up from geocapture/)
BASE_DIR = Path(__file__).resolve().parent.parent


class Settings:
    """Application configuration settings"""

    # Database
    DATABASE_URL: str = os.getenv(
        "DATABASE_URL", f"sqlite:///{(BASE_DIR / 'geocapture.db').as_posix()}"
    )

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_FORMAT: str = os.getenv("LOG_FORMAT", "console")

    # Map surface
    PROJECTED_EPSG: int = int(os.getenv("PROJECTED_EPSG", "3857"))
    VIEWPORT_WIDTH: int = int(os.getenv("VIEWPORT_WIDTH", "800"))
    VIEWPORT_HEIGHT: int = int(os.getenv("VIEWPORT_HEIGHT", "500"))
    DEFAULT_BASE_LAYER: str = os.getenv("DEFAULT_BASE_LAYER", "street")

    # Widget sessions
    SESSION_IDLE_TTL_MINUTES: int = int(os.getenv("SESSION_IDLE_TTL_MINUTES", "60"))
    MAX_SESSIONS: int = int(os.getenv("MAX_SESSIONS", "1000"))

    @classmethod
    def validate(cls) -> None:
        """Validate settings"""
        if cls.DEFAULT_BASE_LAYER not in ("street", "satellite"):
            raise ValueError(f"Invalid DEFAULT_BASE_LAYER: {cls.DEFAULT_BASE_LAYER}")

        if cls.LOG_FORMAT not in ("json", "console"):
            raise ValueError(f"Invalid LOG_FORMAT: {cls.LOG_FORMAT}")

        if cls.VIEWPORT_WIDTH <= 0 or cls.VIEWPORT_HEIGHT <= 0:
            raise ValueError("Viewport dimensions must be positive")

        if cls.SESSION_IDLE_TTL_MINUTES <= 0 or cls.MAX_SESSIONS <= 0:
            raise ValueError("Session limits must be positive")


# Create singleton instance
settings = Settings()
