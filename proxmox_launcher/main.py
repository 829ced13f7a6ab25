import logging
import threading

from fastapi import FastAPI

from proxmox_launcher import slots
from proxmox_launcher.api import router
from proxmox_launcher.config import get_settings
from proxmox_launcher.logging_config import configure_logging


logger = logging.getLogger(__name__)
stop_event = threading.Event()


app = FastAPI(title="Proxmox VM Launcher")
app.include_router(router)


@app.on_event("startup")
def startup() -> None:
    configure_logging()
    settings = get_settings()
    if not settings.disable_slot_wiring:
        slots.wire_slots(settings, stop_event)
    logger.info(
        "launcher startup complete datacenters=%s slots=%s",
        len(settings.datacenters),
        len(settings.slots),
    )


@app.on_event("shutdown")
def shutdown() -> None:
    # Interrupts task polling and settle delays still in flight.
    stop_event.set()
    slots.registry.close()
