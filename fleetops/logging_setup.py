import logging
from pathlib import Path
from typing import Optional
from .config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

# client libraries that log every request at INFO
QUIET_LOGGERS = ("httpx", "httpcore", "asyncio")


def configure_logging(log_file: Optional[str] = None, level: Optional[str] = None):
    """Send the admin API's logs to one file.

    Relative paths resolve under `fleetops/logs/`. Backend failures are logged
    once, where `errors.reported` catches them.
    """
    logs_dir = Path(__file__).resolve().parent / "logs"
    path = Path(log_file or settings.LOG_FILE)
    if not path.is_absolute():
        path = logs_dir / path
    path.parent.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        filename=str(path),
        level=getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt="%Y-%m-%dT%H:%M:%S",
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
