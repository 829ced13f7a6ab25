import logging

from proxmox_launcher.config import get_settings


TaskListener = logging.Logger | logging.LoggerAdapter

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging() -> None:
    settings = get_settings()
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger("proxmox_launcher").setLevel(level)
    # httpx logs every request at INFO; task polling would flood the log.
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))


def slot_logger(slot_name: str) -> logging.Logger:
    return logging.getLogger(f"proxmox_launcher.slot.{slot_name}")
