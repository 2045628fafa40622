import logging
from typing import Optional

from kitchenflow.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def setup_logging(level: Optional[str] = None) -> None:
    """Configure the root logger once at startup; module loggers inherit it."""
    lvl = getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO)
    logging.basicConfig(level=lvl, format=LOG_FORMAT)
    logging.getLogger("kitchenflow").setLevel(lvl)
    # APScheduler logs every run at INFO
    logging.getLogger("apscheduler").setLevel(max(lvl, logging.WARNING))
