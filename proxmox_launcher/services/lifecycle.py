import logging
import threading
from dataclasses import dataclass

from proxmox_launcher.config import CURRENT_SNAPSHOT, RevertPolicy
from proxmox_launcher.datacenters import DatacenterRegistry, resolve
from proxmox_launcher.errors import (
    AuthError,
    ProtocolError,
    TaskTimeoutError,
    TransportError,
    WaitInterruptedError,
)
from proxmox_launcher.logging_config import TaskListener
from proxmox_launcher.metrics import metrics
from proxmox_launcher.tasks import HypervisorConnection, TaskStatus, wait_for_task


logger = logging.getLogger(__name__)

# Failures of a single VM operation. They are reported, never raised: the
# delegate's connection attempt decides whether the launch worked.
OPERATION_ERRORS = (TransportError, ProtocolError, AuthError, TaskTimeoutError)

ERROR_LABELS = {
    TransportError: "transport error",
    ProtocolError: "parsing response",
    AuthError: "login failed",
    TaskTimeoutError: "task timed out",
    WaitInterruptedError: "waiting for task completion failed",
}


@dataclass(frozen=True)
class VmTarget:
    datacenter_id: str
    node: str
    vm_id: int


@dataclass(frozen=True)
class StartPolicy:
    start_vm: bool = True
    settle_delay_sec: float = 0


@dataclass(frozen=True)
class OperationResult:
    operation: str
    ok: bool
    skipped: bool = False
    status: TaskStatus | None = None
    error: str | None = None

    @classmethod
    def skip(cls, operation: str) -> "OperationResult":
        return cls(operation=operation, ok=True, skipped=True)

    @classmethod
    def from_status(cls, operation: str, status: TaskStatus) -> "OperationResult":
        return cls(operation=operation, ok=status.ok, status=status)

    @classmethod
    def failed(cls, operation: str, exc: Exception) -> "OperationResult":
        label = ERROR_LABELS.get(type(exc), type(exc).__name__)
        return cls(operation=operation, ok=False, error=f"{label}: {exc}")


class LifecycleController:
    """Drives one VM through revert, start and shutdown on its Proxmox node.

    The hypervisor connection is looked up in the registry for every
    operation, so a controller survives datacenter reconfiguration.
    """

    def __init__(
        self,
        target: VmTarget,
        registry: DatacenterRegistry,
        *,
        snapshot_name: str = CURRENT_SNAPSHOT,
        start_policy: StartPolicy | None = None,
        revert_policy: RevertPolicy = RevertPolicy.AFTER_CONNECT,
        delegate_reports_readiness: bool = False,
        poll_interval_sec: float = 1.0,
        task_timeout_sec: float | None = None,
        cancel: threading.Event | None = None,
    ):
        self.target = target
        self.registry = registry
        self.snapshot_name = snapshot_name
        self.start_policy = start_policy or StartPolicy()
        self.revert_policy = revert_policy
        self.delegate_reports_readiness = delegate_reports_readiness
        self.poll_interval_sec = poll_interval_sec
        self.task_timeout_sec = task_timeout_sec
        self.cancel = cancel or threading.Event()

    def _connection(self) -> HypervisorConnection:
        return resolve(self.registry, self.target.datacenter_id)

    def _wait(self, connection: HypervisorConnection, handle: str) -> TaskStatus:
        return wait_for_task(
            connection,
            self.target.node,
            handle,
            poll_interval_sec=self.poll_interval_sec,
            timeout_sec=self.task_timeout_sec,
            cancel=self.cancel,
        )

    def _report_failure(
        self, operation: str, exc: Exception, log: TaskListener
    ) -> OperationResult:
        result = OperationResult.failed(operation, exc)
        log.error("ERROR: %s", result.error)
        metrics.inc("vm_operation_failures_total")
        return result

    def ensure_running(self, listener: TaskListener | None = None) -> OperationResult:
        log = listener or logger
        node, vm_id = self.target.node, self.target.vm_id
        connection = self._connection()
        try:
            if connection.is_running(node, vm_id):
                return OperationResult.skip("start")
            log.info("Starting virtual machine vm_id=%s node=%s...", vm_id, node)
            handle = connection.start(node, vm_id)
            status = self._wait(connection, handle)
        except OPERATION_ERRORS as exc:
            return self._report_failure("start", exc, log)
        metrics.inc("vm_start_total")
        log.info("Task finished! status=%s", status.raw)
        return OperationResult.from_status("start", status)

    def revert_to_snapshot(
        self, listener: TaskListener | None = None, display_name: str | None = None
    ) -> OperationResult:
        log = listener or logger
        node, vm_id = self.target.node, self.target.vm_id
        result = OperationResult.skip("revert")
        if self.snapshot_name != CURRENT_SNAPSHOT:
            connection = self._connection()
            try:
                log.info(
                    'Virtual machine "%s" (name "%s") is being reverted to snapshot "%s"...',
                    vm_id,
                    display_name or vm_id,
                    self.snapshot_name,
                )
                handle = connection.rollback_snapshot(node, vm_id, self.snapshot_name)
                log.info("Proxmox returned: %s", handle)
                status = self._wait(connection, handle)
                metrics.inc("vm_revert_total")
                log.info("Task finished! status=%s", status.raw)
                if not status.ok:
                    log.warning(
                        "snapshot rollback did not succeed vm_id=%s exit_code=%s",
                        vm_id,
                        status.exit_code,
                    )
                result = OperationResult.from_status("revert", status)
            except OPERATION_ERRORS as exc:
                result = self._report_failure("revert", exc, log)

        if self.start_policy.start_vm:
            self.ensure_running(log)

        self._settle(log)
        return result

    def _settle(self, log: TaskListener) -> None:
        # Agents that dial back announce themselves; no grace period needed.
        if self.delegate_reports_readiness:
            return
        delay = self.start_policy.settle_delay_sec
        if delay <= 0:
            return
        log.info("Waiting %ss for virtual machine vm_id=%s to settle", delay, self.target.vm_id)
        if self.cancel.wait(delay):
            raise WaitInterruptedError(
                f"settle delay interrupted vm_id={self.target.vm_id}"
            )

    def shutdown(
        self, listener: TaskListener | None = None, display_name: str | None = None
    ) -> OperationResult:
        log = listener or logger
        node, vm_id = self.target.node, self.target.vm_id
        connection = self._connection()
        try:
            log.info(
                'Virtual machine "%s" (agent "%s") is being shut down.',
                vm_id,
                display_name or vm_id,
            )
            handle = connection.shutdown(node, vm_id)
            status = self._wait(connection, handle)
            metrics.inc("vm_shutdown_total")
            if not status.ok:
                log.info(
                    'Virtual machine "%s" (agent "%s") was not able to shut down, doing a stop instead. status=%s',
                    vm_id,
                    display_name or vm_id,
                    status.raw,
                )
                metrics.inc("vm_stop_fallback_total")
                handle = connection.stop(node, vm_id)
                status = self._wait(connection, handle)
            log.info("Task finished! status=%s", status.raw)
            return OperationResult.from_status("shutdown", status)
        except AuthError as exc:
            logger.warning("shutdown login failed vm_id=%s: %s", vm_id, exc)
            metrics.inc("vm_operation_failures_total")
            return OperationResult.failed("shutdown", exc)
        except (TransportError, ProtocolError, TaskTimeoutError, WaitInterruptedError) as exc:
            result = OperationResult.failed("shutdown", exc)
            logger.error("shutdown failed vm_id=%s: %s", vm_id, result.error)
            metrics.inc("vm_operation_failures_total")
            return result
