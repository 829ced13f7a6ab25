import logging
import subprocess
import threading

import httpx
import pytest

from proxmox_launcher.clients.http import RetryPolicy
from proxmox_launcher.clients.jenkins import JenkinsClient
from proxmox_launcher.connectors import CommandConnector, InboundAgentConnector
from proxmox_launcher.errors import ConnectorError, ConnectTimeoutError, WaitInterruptedError


listener = logging.getLogger("proxmox_launcher.slot.test")


class FakeJenkins:
    def __init__(self, connected_after: int):
        self.connected_after = connected_after
        self.checks: list[str] = []

    def is_node_connected(self, node_name: str) -> bool:
        self.checks.append(node_name)
        return len(self.checks) > self.connected_after


def test_inbound_connector_capabilities():
    connector = InboundAgentConnector()
    assert connector.launch_supported is False
    assert connector.requires_explicit_launch is True
    assert connector.reports_readiness is True


def test_inbound_connector_waits_until_node_online():
    jenkins = FakeJenkins(connected_after=2)
    connector = InboundAgentConnector(
        jenkins, "ephemeral-1", connect_deadline_sec=5, poll_interval_sec=0
    )
    connector.establish_connection("agent-1", listener)
    assert jenkins.checks == ["ephemeral-1"] * 3


def test_inbound_connector_times_out():
    jenkins = FakeJenkins(connected_after=10_000)
    connector = InboundAgentConnector(
        jenkins, "ephemeral-1", connect_deadline_sec=0.02, poll_interval_sec=0.01
    )
    with pytest.raises(ConnectTimeoutError):
        connector.establish_connection("agent-1", listener)


def test_inbound_connector_interrupted():
    cancel = threading.Event()
    cancel.set()
    connector = InboundAgentConnector(
        FakeJenkins(connected_after=10), "ephemeral-1", poll_interval_sec=1, cancel=cancel
    )
    with pytest.raises(WaitInterruptedError):
        connector.establish_connection("agent-1", listener)


def test_inbound_connector_without_jenkins_only_logs(caplog):
    caplog.set_level(logging.INFO)
    InboundAgentConnector().establish_connection("agent-1", listener)
    assert "Waiting for inbound agent agent-1 to connect" in caplog.text


def test_command_connector_runs_command(monkeypatch):
    captured = {}

    def fake_run(cmd, **kwargs):
        captured["cmd"] = cmd
        captured["kwargs"] = kwargs
        return subprocess.CompletedProcess(cmd, 0, stdout="agent up\n", stderr="")

    monkeypatch.setattr("proxmox_launcher.connectors.subprocess.run", fake_run)
    connector = CommandConnector(["ssh", "vm-101", "start-agent"], timeout_sec=30)
    connector.establish_connection("agent-1", listener)
    assert captured["cmd"] == ["ssh", "vm-101", "start-agent"]
    assert captured["kwargs"]["check"] is True
    assert captured["kwargs"]["timeout"] == 30
    assert connector.reports_readiness is False


def test_command_connector_failure_raises_connector_error(monkeypatch):
    def fake_run(cmd, **_kwargs):
        raise subprocess.CalledProcessError(255, cmd, output="", stderr="connection refused")

    monkeypatch.setattr("proxmox_launcher.connectors.subprocess.run", fake_run)
    connector = CommandConnector(["ssh", "vm-101", "start-agent"])
    with pytest.raises(ConnectorError) as excinfo:
        connector.establish_connection("agent-1", listener)
    assert "connection refused" in str(excinfo.value)


def test_command_connector_requires_command():
    with pytest.raises(ValueError):
        CommandConnector([])


def _jenkins(handler) -> JenkinsClient:
    return JenkinsClient(
        "http://jenkins:8080",
        "admin",
        "admin",
        RetryPolicy(attempts=2, sleep_sec=0),
        transport=httpx.MockTransport(handler),
    )


def test_inbound_connector_maps_jenkins_outage_to_connector_error():
    requests = []

    def handler(request):
        requests.append(request.url.path)
        return httpx.Response(status_code=503, text="maintenance", request=request)

    connector = InboundAgentConnector(
        _jenkins(handler), "ephemeral-1", connect_deadline_sec=5, poll_interval_sec=0
    )
    with pytest.raises(ConnectorError) as excinfo:
        connector.establish_connection("agent-1", listener)
    assert "ephemeral-1" in str(excinfo.value)
    assert requests == ["/computer/ephemeral-1/api/json"] * 2


def test_inbound_connector_maps_unreadable_status_to_connector_error():
    def handler(request):
        return httpx.Response(status_code=200, text="<html>login</html>", request=request)

    connector = InboundAgentConnector(
        _jenkins(handler), "ephemeral-1", connect_deadline_sec=5, poll_interval_sec=0
    )
    with pytest.raises(ConnectorError):
        connector.establish_connection("agent-1", listener)
