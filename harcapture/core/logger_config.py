import logging
import sys

class ColorFormatter(logging.Formatter):
    """A logging formatter that colors each line by level."""

    COLORS = {
        "DEBUG": "\033[94m",    # Blue
        "INFO": "\033[92m",     # Green
        "WARNING": "\033[93m",  # Yellow
        "ERROR": "\033[91m",    # Red
        "CRITICAL": "\033[91;1m", # Bold Red
        "RESET": "\033[0m",
    }

    def __init__(self, fmt=None, datefmt=None, use_color: bool = True):
        super().__init__(fmt, datefmt)
        self.use_color = use_color

    def format(self, record):
        log_message = super().format(record)
        if not self.use_color:
            return log_message
        return f"{self.COLORS.get(record.levelname, '')}{log_message}{self.COLORS['RESET']}"

def setup_logger(debug: bool = False):
    """
    Sets up the capture logger on stdout.

    Args:
        debug: If True, sets the logging level to DEBUG. Otherwise, INFO.
    """
    level = logging.DEBUG if debug else logging.INFO
    formatter = ColorFormatter(
        "[%(asctime)s] [%(levelname)-8s] [%(name)s] - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        use_color=sys.stdout.isatty(),
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    if root_logger.hasHandlers():
        root_logger.handlers.clear()
    root_logger.addHandler(handler)

    # Driver chatter only shows up at WARNING and above
    logging.getLogger("playwright").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    return root_logger
