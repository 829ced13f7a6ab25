import logging

from fastapi import APIRouter, Depends, Header, HTTPException

from proxmox_launcher import slots
from proxmox_launcher.auth import is_authorized
from proxmox_launcher.config import get_settings
from proxmox_launcher.errors import (
    ConnectorError,
    DatacenterNotFoundError,
    WaitInterruptedError,
)
from proxmox_launcher.logging_config import slot_logger
from proxmox_launcher.metrics import metrics
from proxmox_launcher.schemas import HookResponse, OperationRead, SlotRead
from proxmox_launcher.services.launcher import VirtualMachineLauncher


router = APIRouter()
logger = logging.getLogger(__name__)


def require_token(authorization: str | None = Header(default=None)) -> None:
    if not is_authorized(authorization, get_settings().api_auth_token):
        raise HTTPException(status_code=401, detail="invalid bearer token")


def _get_launcher(name: str) -> VirtualMachineLauncher:
    launcher = slots.launchers.get(name)
    if launcher is None:
        raise HTTPException(status_code=404, detail="unknown slot")
    return launcher


def _run_hook(name: str, hook: str, action):
    try:
        return action()
    except DatacenterNotFoundError as exc:
        logger.error("%s failed slot=%s: %s", hook, name, exc)
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ConnectorError as exc:
        logger.error("%s failed slot=%s: %s", hook, name, exc)
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    except WaitInterruptedError as exc:
        logger.warning("%s interrupted slot=%s: %s", hook, name, exc)
        raise HTTPException(status_code=503, detail=str(exc)) from exc


def _slot_read(name: str, launcher: VirtualMachineLauncher) -> SlotRead:
    controller = launcher.controller
    return SlotRead(
        name=name,
        datacenter=controller.target.datacenter_id,
        node=controller.target.node,
        vm_id=controller.target.vm_id,
        snapshot_name=controller.snapshot_name,
        start_vm=controller.start_policy.start_vm,
        settle_delay_sec=controller.start_policy.settle_delay_sec,
        revert_policy=controller.revert_policy,
        revert_policy_label=controller.revert_policy.label,
        launch_supported=launcher.is_launch_supported(),
    )


@router.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/metrics")
def metrics_endpoint() -> dict[str, int]:
    return metrics.snapshot()


@router.get("/v1/slots", response_model=list[SlotRead], dependencies=[Depends(require_token)])
def list_slots() -> list[SlotRead]:
    return [_slot_read(name, launcher) for name, launcher in sorted(slots.launchers.items())]


@router.post("/v1/slots/{name}/launch", response_model=HookResponse, dependencies=[Depends(require_token)])
def launch(name: str) -> HookResponse:
    launcher = _get_launcher(name)
    _run_hook(name, "launch", lambda: launcher.launch(name, slot_logger(name)))
    return HookResponse(slot=name, hook="launch")


@router.post(
    "/v1/slots/{name}/before-disconnect",
    response_model=HookResponse,
    dependencies=[Depends(require_token)],
)
def before_disconnect(name: str) -> HookResponse:
    launcher = _get_launcher(name)
    _run_hook(
        name,
        "before_disconnect",
        lambda: launcher.before_disconnect(name, slot_logger(name)),
    )
    return HookResponse(slot=name, hook="before_disconnect")


@router.post(
    "/v1/slots/{name}/after-disconnect",
    response_model=HookResponse,
    dependencies=[Depends(require_token)],
)
def after_disconnect(name: str) -> HookResponse:
    launcher = _get_launcher(name)
    _run_hook(
        name,
        "after_disconnect",
        lambda: launcher.after_disconnect(name, slot_logger(name)),
    )
    return HookResponse(slot=name, hook="after_disconnect")


@router.post("/v1/slots/{name}/revert", response_model=OperationRead, dependencies=[Depends(require_token)])
def revert(name: str) -> OperationRead:
    launcher = _get_launcher(name)
    result = _run_hook(
        name, "revert", lambda: launcher.revert_before_job(name, slot_logger(name))
    )
    return OperationRead(
        operation=result.operation,
        ok=result.ok,
        skipped=result.skipped,
        exit_code=result.status.exit_code if result.status else None,
        error=result.error,
    )
