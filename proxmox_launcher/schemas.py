from pydantic import BaseModel

from proxmox_launcher.config import RevertPolicy


class SlotRead(BaseModel):
    name: str
    datacenter: str
    node: str
    vm_id: int
    snapshot_name: str
    start_vm: bool
    settle_delay_sec: float
    revert_policy: RevertPolicy
    revert_policy_label: str
    launch_supported: bool


class OperationRead(BaseModel):
    operation: str
    ok: bool
    skipped: bool
    exit_code: str | None = None
    error: str | None = None


class HookResponse(BaseModel):
    slot: str
    hook: str
    completed: bool = True
