"""
Configuration settings for flow runs
"""
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class RunSettings(BaseSettings):
    """Settings for the interpreter and the Playwright session.

    Every field can be overridden with a ``FLOWWRIGHT_``-prefixed environment
    variable (``FLOWWRIGHT_HEADLESS=false``) or a ``.env`` file.
    """

    # Browser Settings
    browser: str = "chromium"  # chromium, firefox or webkit
    headless: bool = True
    viewport_width: int = 1280
    viewport_height: int = 720
    base_url: Optional[str] = None
    http_username: Optional[str] = None
    http_password: Optional[str] = None

    # Timeouts (milliseconds)
    navigation_timeout_ms: int = 30000
    action_timeout_ms: int = 10000

    # Pacing
    node_delay_ms: int = 0  # pause after every executed step
    loop_delay_ms: int = 0  # pause between loop iterations

    # Retry Strategy (navigation and reload only)
    retry_attempts: int = 3
    retry_delay_ms: int = 1000

    # Loops
    max_iterations: int = 100

    # Diagnostics
    screenshot_dir: Path = Path("screenshots")
    capture_failure_screenshots: bool = True

    # Live preview (debug mode)
    preview_enabled: bool = False
    preview_interval_ms: int = 300
    preview_quality: int = 70

    # Logging
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="FLOWWRIGHT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


settings = RunSettings()
