import threading

import pytest

from proxmox_launcher.datacenters import Datacenter, DatacenterRegistry
from proxmox_launcher.tasks import TaskStatus


class FakeHypervisor:
    def __init__(self, calls: list) -> None:
        self.calls = calls
        self.running = False
        self.exit_codes: dict[str, str] = {}
        self.failures: dict[str, Exception] = {}
        self._tasks: dict[str, str] = {}

    def _record(self, op: str, *args) -> None:
        self.calls.append((op, *args))
        if op in self.failures:
            raise self.failures[op]

    def _task(self, op: str) -> str:
        upid = f"UPID:pve1:{op}:{len(self._tasks)}"
        self._tasks[upid] = op
        return upid

    def is_running(self, node: str, vm_id: int) -> bool:
        self._record("is_running", node, vm_id)
        return self.running

    def start(self, node: str, vm_id: int) -> str:
        self._record("start", node, vm_id)
        self.running = True
        return self._task("start")

    def shutdown(self, node: str, vm_id: int) -> str:
        self._record("shutdown", node, vm_id)
        return self._task("shutdown")

    def stop(self, node: str, vm_id: int) -> str:
        self._record("stop", node, vm_id)
        self.running = False
        return self._task("stop")

    def rollback_snapshot(self, node: str, vm_id: int, name: str) -> str:
        self._record("rollback_snapshot", node, vm_id, name)
        return self._task("rollback_snapshot")

    def task_status(self, node: str, handle: str) -> TaskStatus:
        op = self._tasks[handle]
        self._record("task_status", op)
        exit_code = self.exit_codes.get(op, "OK")
        return TaskStatus(
            terminal=True,
            exit_code=exit_code,
            raw={"upid": handle, "status": "stopped", "exitstatus": exit_code},
        )

    def close(self) -> None:
        self.calls.append(("close",))


class FakeDelegate:
    def __init__(self, calls: list) -> None:
        self.calls = calls
        self.launch_supported = False
        self.requires_explicit_launch = True
        self.reports_readiness = False
        self.fail_connect: Exception | None = None

    def establish_connection(self, display_name, listener) -> None:
        self.calls.append(("establish_connection", display_name))
        if self.fail_connect is not None:
            raise self.fail_connect

    def before_disconnect(self, display_name, listener) -> None:
        self.calls.append(("before_disconnect", display_name))

    def after_disconnect(self, display_name, listener) -> None:
        self.calls.append(("after_disconnect", display_name))


class RecordingEvent(threading.Event):
    """Records sleeps instead of blocking."""

    def __init__(self, calls: list) -> None:
        super().__init__()
        self.calls = calls

    def wait(self, timeout=None) -> bool:
        self.calls.append(("sleep", timeout))
        return self.is_set()


@pytest.fixture
def calls() -> list:
    return []


@pytest.fixture
def hypervisor(calls) -> FakeHypervisor:
    return FakeHypervisor(calls)


@pytest.fixture
def registry(hypervisor) -> DatacenterRegistry:
    return DatacenterRegistry([Datacenter("dc1", lambda: hypervisor)])


@pytest.fixture
def delegate(calls) -> FakeDelegate:
    return FakeDelegate(calls)


@pytest.fixture
def sleeper(calls) -> RecordingEvent:
    return RecordingEvent(calls)
