import logging
import os

LOG_FORMAT = "[%(asctime)s][%(name)s][%(levelname)s] - %(message)s"


def setup_logging(debug: bool = False, log_level: str = "info") -> None:
    """Configure the root logger. ``debug`` forces DEBUG level."""
    level = logging.DEBUG if debug else getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT, force=True)
    # Lightning INFO output only in debug mode
    logging.getLogger("lightning.pytorch").setLevel(level if debug else logging.WARNING)


def check_or_make_dirs(path: str | os.PathLike) -> None:
    """Create ``path`` (and parents) if it does not exist."""
    os.makedirs(path, exist_ok=True)
