import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import toml

logger = logging.getLogger(__name__)

WAIT_UNTIL_STATES = ("load", "domcontentloaded", "networkidle", "commit")


@dataclass
class CaptureConfig:
    headless: bool = True
    wait_until: str = "networkidle"
    navigation_timeout_ms: int = 60000
    output_dir: Path = Path(".")
    fetch_timeout: Optional[float] = None
    debug: bool = False

    def __post_init__(self):
        if self.wait_until not in WAIT_UNTIL_STATES:
            raise ValueError(f"wait_until must be one of {', '.join(WAIT_UNTIL_STATES)}, got '{self.wait_until}'.")
        self.output_dir = Path(self.output_dir)
        if not self.fetch_timeout:
            self.fetch_timeout = None


def load_config(config_path: Path = Path("config.toml")) -> CaptureConfig:
    """
    Loads capture settings from a TOML file.

    Args:
        config_path: Path to the config file. A missing file yields the defaults.

    Returns:
        The capture configuration.
    """
    if not config_path.exists():
        logger.debug(f"No config file at '{config_path}', using defaults.")
        return CaptureConfig()

    config = toml.load(config_path)
    browser_config = config.get("browser", {})
    capture_config = config.get("capture", {})
    logging_config = config.get("logging", {})

    logger.debug(f"Loaded config from '{config_path}'.")
    return CaptureConfig(
        headless=browser_config.get("headless", True),
        wait_until=browser_config.get("wait_until", "networkidle"),
        navigation_timeout_ms=browser_config.get("navigation_timeout_ms", 60000),
        output_dir=Path(capture_config.get("output_dir", ".")),
        fetch_timeout=capture_config.get("fetch_timeout") or None,
        debug=logging_config.get("debug", False),
    )
