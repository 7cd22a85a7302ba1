"""
Configuration module for the Around the Block check-in service.

Loads environment variables and provides configuration singletons.
Uses pydantic for validation.
"""

from pydantic_settings import BaseSettings
from typing import Optional
import os


class Config(BaseSettings):
    """
    Application configuration loaded from environment variables.

    All values come from .env file or system environment.
    Type hints provide validation (pydantic converts types automatically).
    """

    # ============================================================
    # BACKEND API
    # ============================================================
    BACKEND_API_URL: str = os.getenv("BACKEND_API_URL", "http://localhost:5000")
    """Around the Block backend base URL. Check-ins, bars and wait times live here."""

    BACKEND_TIMEOUT: float = 15.0
    """Seconds before a backend request is abandoned."""

    # ============================================================
    # CHECK-IN MONITOR
    # ============================================================
    PROXIMITY_RADIUS_METERS: float = 100.0
    """Radius that counts as "at the venue" for check-in and wait-time submission."""

    DWELL_THRESHOLD_MS: int = 15 * 60 * 1000
    """Continuous time near one venue before an automatic check-in. Default: 15 minutes."""

    SAMPLE_INTERVAL_MS: int = 60_000
    """Minimum time between location samples. Default: 60 seconds."""

    SAMPLE_DISTANCE_METERS: float = 50.0
    """Displacement that lets a sample through before the interval elapses."""

    # ============================================================
    # SECURITY CONFIGURATION
    # ============================================================
    SERVICE_TOKEN: str = os.getenv("SERVICE_TOKEN", "")
    """Shared secret for the monitor service. Empty disables the check."""

    # ============================================================
    # SERVER CONFIGURATION
    # ============================================================
    PORT: int = 8000
    """Port to run FastAPI server on. Default: 8000."""

    HOST: str = "0.0.0.0"
    """Host to bind to. 0.0.0.0 = accessible from network."""

    DEBUG: bool = False
    """Enable debug logging. Set True for development, False for production."""

    class Config:
        """Pydantic configuration."""
        env_file = ".env"  # Read from .env file
        case_sensitive = True  # Variable names are case-sensitive
        extra = "ignore"  # Ignore extra env vars not defined above


# ============================================================
# SINGLETON INSTANCE
# ============================================================
# Load config once at startup, reuse throughout app
config = Config()


# ============================================================
# VALIDATION AT STARTUP
# ============================================================
def validate_config() -> dict:
    """
    Validate that config values are usable.

    Called at app startup to fail fast if config is incomplete.

    Returns:
        dict: Status of each checked field

    Raises:
        ValueError: If any value is missing or out of range
    """
    errors = []

    if not config.BACKEND_API_URL:
        errors.append("BACKEND_API_URL is required")
    elif not config.BACKEND_API_URL.startswith(("http://", "https://")):
        errors.append("BACKEND_API_URL must start with http:// or https://")

    if config.PROXIMITY_RADIUS_METERS <= 0:
        errors.append("PROXIMITY_RADIUS_METERS must be positive")

    if config.DWELL_THRESHOLD_MS <= 0:
        errors.append("DWELL_THRESHOLD_MS must be positive")

    if config.SAMPLE_INTERVAL_MS < 0 or config.SAMPLE_DISTANCE_METERS < 0:
        errors.append("SAMPLE_INTERVAL_MS and SAMPLE_DISTANCE_METERS cannot be negative")

    if errors:
        raise ValueError(f"Configuration errors:\n" + "\n".join([f"  - {e}" for e in errors]))

    return {
        "backend": f"✓ {config.BACKEND_API_URL}",
        "radius": f"✓ {config.PROXIMITY_RADIUS_METERS:g} m",
        "dwell": f"✓ {config.DWELL_THRESHOLD_MS // 1000} s",
        "service_token": "✓ Configured" if config.SERVICE_TOKEN else "✗ Disabled",
    }


if __name__ == "__main__":
    """Allow testing config by running: python -m around_the_block.config"""
    try:
        status = validate_config()
        print("✅ Configuration is valid!")
        print("\nConfiguration Status:")
        for key, value in status.items():
            print(f"  {key}: {value}")
    except ValueError as e:
        print(f"❌ Configuration error:\n{e}")
        exit(1)
