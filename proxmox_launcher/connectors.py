import logging
import subprocess
import threading
import time
from typing import Protocol

from proxmox_launcher.clients.http import RequestFailure
from proxmox_launcher.clients.jenkins import JenkinsClient
from proxmox_launcher.errors import ConnectorError, ConnectTimeoutError, WaitInterruptedError
from proxmox_launcher.logging_config import TaskListener


logger = logging.getLogger(__name__)


class DelegateConnector(Protocol):
    """Establishes the agent session once the VM is up.

    ``launch_supported`` is whether the connector does anything when launched.
    ``requires_explicit_launch`` forces a launch call anyway so the VM steps
    run first. ``reports_readiness`` means the agent announces itself, which
    makes the settle delay unnecessary.
    """

    launch_supported: bool
    requires_explicit_launch: bool
    reports_readiness: bool

    def establish_connection(self, display_name: str, listener: TaskListener) -> None: ...

    def before_disconnect(self, display_name: str, listener: TaskListener) -> None: ...

    def after_disconnect(self, display_name: str, listener: TaskListener) -> None: ...


class InboundAgentConnector:
    """The agent inside the VM dials back to Jenkins on its own."""

    launch_supported = False
    requires_explicit_launch = True
    reports_readiness = True

    def __init__(
        self,
        jenkins: JenkinsClient | None = None,
        jenkins_node: str | None = None,
        *,
        connect_deadline_sec: float = 240,
        poll_interval_sec: float = 5.0,
        cancel: threading.Event | None = None,
    ):
        self.jenkins = jenkins
        self.jenkins_node = jenkins_node
        self.connect_deadline_sec = connect_deadline_sec
        self.poll_interval_sec = poll_interval_sec
        self.cancel = cancel or threading.Event()

    def establish_connection(self, display_name: str, listener: TaskListener) -> None:
        node_name = self.jenkins_node or display_name
        if self.jenkins is None:
            listener.info("Waiting for inbound agent %s to connect", node_name)
            return

        deadline = time.monotonic() + self.connect_deadline_sec
        while not self._is_connected(node_name):
            if time.monotonic() >= deadline:
                raise ConnectTimeoutError(
                    f"agent {node_name} did not connect within {self.connect_deadline_sec}s"
                )
            if self.cancel.wait(self.poll_interval_sec):
                raise WaitInterruptedError(f"waiting for agent {node_name} interrupted")
        listener.info("Inbound agent %s connected", node_name)

    def _is_connected(self, node_name: str) -> bool:
        try:
            return self.jenkins.is_node_connected(node_name)
        except RequestFailure as exc:
            raise ConnectorError(f"jenkins node check failed for {node_name}: {exc}") from exc
        except ValueError as exc:
            raise ConnectorError(
                f"unreadable jenkins node status for {node_name}: {exc}"
            ) from exc

    def before_disconnect(self, display_name: str, listener: TaskListener) -> None:
        return

    def after_disconnect(self, display_name: str, listener: TaskListener) -> None:
        listener.info("Inbound agent %s disconnected", self.jenkins_node or display_name)


class CommandConnector:
    """Starts the agent by running a command, e.g. ``ssh vm java -jar agent.jar``."""

    launch_supported = True
    requires_explicit_launch = False
    reports_readiness = False

    def __init__(self, command: list[str], *, timeout_sec: float | None = None):
        if not command:
            raise ValueError("command connector needs a command")
        self.command = command
        self.timeout_sec = timeout_sec

    def establish_connection(self, display_name: str, listener: TaskListener) -> None:
        listener.info("Launching agent %s command=%s", display_name, " ".join(self.command))
        try:
            completed = subprocess.run(
                self.command,
                check=True,
                capture_output=True,
                text=True,
                timeout=self.timeout_sec,
            )
        except subprocess.CalledProcessError as exc:
            stderr = (exc.stderr or "").strip()
            stdout = (exc.stdout or "").strip()
            raise ConnectorError(
                f"agent launch failed for {display_name}: {stderr or stdout or exc}"
            ) from exc
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise ConnectorError(f"agent launch failed for {display_name}: {exc}") from exc
        output = (completed.stdout or "").strip()
        if output:
            listener.info("%s", output)

    def before_disconnect(self, display_name: str, listener: TaskListener) -> None:
        return

    def after_disconnect(self, display_name: str, listener: TaskListener) -> None:
        return
