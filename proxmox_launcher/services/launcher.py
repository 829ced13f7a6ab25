import logging
from threading import Lock

from proxmox_launcher.config import RevertPolicy
from proxmox_launcher.connectors import DelegateConnector
from proxmox_launcher.logging_config import TaskListener
from proxmox_launcher.metrics import metrics
from proxmox_launcher.services.lifecycle import LifecycleController, OperationResult


logger = logging.getLogger(__name__)


class VirtualMachineLauncher:
    """Wraps a delegate connector with Proxmox VM revert/start/shutdown steps."""

    def __init__(self, delegate: DelegateConnector, controller: LifecycleController):
        self.delegate = delegate
        self.controller = controller
        self._disconnect_lock = Lock()

    @property
    def revert_policy(self) -> RevertPolicy:
        return self.controller.revert_policy

    def is_launch_supported(self) -> bool:
        return bool(self.delegate.launch_supported or self.delegate.requires_explicit_launch)

    def launch(self, display_name: str, listener: TaskListener | None = None) -> None:
        log = listener or logger
        metrics.inc("launch_total")
        result: OperationResult | None = None
        if self.revert_policy == RevertPolicy.AFTER_CONNECT:
            result = self.controller.revert_to_snapshot(log, display_name)
        elif self.controller.start_policy.start_vm:
            result = self.controller.ensure_running(log)
        if result is not None:
            _log_result(result, display_name)
        self.delegate.establish_connection(display_name, log)

    def revert_before_job(
        self, display_name: str, listener: TaskListener | None = None
    ) -> OperationResult:
        result = self.controller.revert_to_snapshot(listener or logger, display_name)
        _log_result(result, display_name)
        return result

    def before_disconnect(self, display_name: str, listener: TaskListener | None = None) -> None:
        log = listener or logger
        with self._disconnect_lock:
            if self.revert_policy == RevertPolicy.AFTER_CONNECT:
                _log_result(self.controller.shutdown(log, display_name), display_name)
            self.delegate.before_disconnect(display_name, log)

    def after_disconnect(self, display_name: str, listener: TaskListener | None = None) -> None:
        with self._disconnect_lock:
            self.delegate.after_disconnect(display_name, listener or logger)


def _log_result(result: OperationResult, display_name: str) -> None:
    if result.skipped:
        logger.debug("vm %s skipped agent=%s", result.operation, display_name)
    elif result.ok:
        logger.info("vm %s finished agent=%s", result.operation, display_name)
    else:
        logger.warning(
            "vm %s failed agent=%s exit_code=%s error=%s",
            result.operation,
            display_name,
            result.status.exit_code if result.status else None,
            result.error,
        )
