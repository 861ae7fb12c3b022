import logging
import sys
from pathlib import Path

# Docker SDK and aiohttp access logs are noisy at INFO
QUIET_LOGGERS = ("docker", "urllib3", "aiohttp.access")


def get_logger(name: str) -> logging.Logger:
    logger = logging.getLogger(name)
    logger.propagate = True
    return logger


def setup_root_logger(
    level: str = "INFO",
    log_file: str | None = None,
    quiet_loggers: tuple[str, ...] = QUIET_LOGGERS,
):
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    root_logger.handlers.clear()

    # Engine calls run in worker threads, so the thread name is kept
    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - [%(threadName)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = logging.FileHandler(log_file)
    else:
        handler = logging.StreamHandler(sys.stdout)

    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    for name in quiet_loggers:
        logging.getLogger(name).setLevel(logging.WARNING)
