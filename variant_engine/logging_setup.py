import logging
import logging.handlers
from pathlib import Path

from variant_engine.config import Settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"


def setup_logging(settings: Settings) -> Path | None:
    """Configure root logging: console always, rotating file when LOG_DIR is set.

    Returns the log file path, or None without a file handler.
    """
    fmt = logging.Formatter(LOG_FORMAT)
    root = logging.getLogger()
    root.setLevel(settings.LOG_LEVEL.upper())

    if not any(type(h) is logging.StreamHandler for h in root.handlers):
        console = logging.StreamHandler()
        console.setFormatter(fmt)
        root.addHandler(console)

    if not settings.LOG_DIR:
        return None

    log_dir = Path(settings.LOG_DIR).expanduser()
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / "variant_engine.log"

    # avoid duplicate handlers on repeated setup
    if not any(getattr(h, "baseFilename", "") == str(log_path.resolve()) for h in root.handlers):
        handler = logging.handlers.RotatingFileHandler(log_path, maxBytes=5_000_000, backupCount=3, encoding="utf-8")
        handler.setFormatter(fmt)
        root.addHandler(handler)

    return log_path
