import threading
import time
from dataclasses import dataclass, field
from typing import Any, Protocol

from proxmox_launcher.errors import TaskTimeoutError, WaitInterruptedError


TASK_OK = "OK"


@dataclass(frozen=True)
class TaskStatus:
    terminal: bool
    exit_code: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.terminal and self.exit_code == TASK_OK


class HypervisorConnection(Protocol):
    def is_running(self, node: str, vm_id: int) -> bool: ...

    def start(self, node: str, vm_id: int) -> str: ...

    def shutdown(self, node: str, vm_id: int) -> str: ...

    def stop(self, node: str, vm_id: int) -> str: ...

    def rollback_snapshot(self, node: str, vm_id: int, name: str) -> str: ...

    def task_status(self, node: str, handle: str) -> TaskStatus: ...

    def close(self) -> None: ...


def wait_for_task(
    connection: HypervisorConnection,
    node: str,
    handle: str,
    *,
    poll_interval_sec: float = 1.0,
    timeout_sec: float | None = None,
    cancel: threading.Event | None = None,
) -> TaskStatus:
    """Block until the hypervisor reports the task as finished.

    The exit code is returned untouched; callers decide what counts as
    success. Setting ``cancel`` aborts the wait with WaitInterruptedError.
    ``timeout_sec=None`` waits for as long as the hypervisor keeps the task
    running.
    """
    stop_event = cancel or threading.Event()
    deadline = None if timeout_sec is None else time.monotonic() + timeout_sec
    while True:
        if stop_event.is_set():
            raise WaitInterruptedError(
                f"waiting for task interrupted node={node} task={handle}"
            )
        status = connection.task_status(node, handle)
        if status.terminal:
            return status
        if deadline is not None and time.monotonic() >= deadline:
            raise TaskTimeoutError(node=node, handle=handle, timeout_sec=timeout_sec)
        if stop_event.wait(poll_interval_sec):
            raise WaitInterruptedError(
                f"waiting for task interrupted node={node} task={handle}"
            )
