import threading

import pytest

from proxmox_launcher import slots
from proxmox_launcher.clients.proxmox import ProxmoxClient
from proxmox_launcher.config import RevertPolicy, Settings
from proxmox_launcher.connectors import CommandConnector, InboundAgentConnector
from proxmox_launcher.datacenters import DatacenterRegistry, resolve
from proxmox_launcher.errors import DatacenterNotFoundError


@pytest.fixture(autouse=True)
def isolated_slots(monkeypatch):
    monkeypatch.setattr(slots, "registry", DatacenterRegistry())
    monkeypatch.setattr(slots, "launchers", {})


def _settings(**overrides) -> Settings:
    values = {
        "datacenters": [
            {"name": "lab", "api_url": "https://pve:8006", "api_token": "root@pam!ci=x"}
        ],
        "slots": [
            {
                "name": "agent-1",
                "datacenter": "lab",
                "node": "pve1",
                "vm_id": 101,
                "snapshot_name": "clean",
                "settle_delay_sec": 15,
            },
            {
                "name": "agent-2",
                "datacenter": "lab",
                "node": "pve2",
                "vm_id": 102,
                "revert_policy": "BEFORE_JOB",
                "connector": "command",
                "connect_command": ["ssh", "agent-2", "start-agent"],
            },
        ],
        "task_timeout_sec": 90,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def test_wire_slots_builds_launchers():
    cancel = threading.Event()
    slots.wire_slots(_settings(), cancel)

    assert sorted(slots.launchers) == ["agent-1", "agent-2"]
    first = slots.launchers["agent-1"]
    assert isinstance(first.delegate, InboundAgentConnector)
    assert first.controller.snapshot_name == "clean"
    assert first.controller.start_policy.settle_delay_sec == 15
    assert first.controller.delegate_reports_readiness is True
    assert first.controller.task_timeout_sec == 90
    assert first.controller.cancel is cancel

    second = slots.launchers["agent-2"]
    assert isinstance(second.delegate, CommandConnector)
    assert second.revert_policy is RevertPolicy.BEFORE_JOB
    assert second.controller.delegate_reports_readiness is False
    assert second.is_launch_supported()


def test_wire_slots_registers_proxmox_datacenters():
    slots.wire_slots(_settings(), threading.Event())
    connection = resolve(slots.registry, "lab")
    assert isinstance(connection, ProxmoxClient)
    assert connection.base_url == "https://pve:8006"


def test_wire_slots_ignores_duplicate_names(caplog):
    settings = _settings(
        slots=[
            {"name": "agent-1", "datacenter": "lab", "node": "pve1", "vm_id": 101},
            {"name": "agent-1", "datacenter": "lab", "node": "pve1", "vm_id": 999},
        ]
    )
    slots.wire_slots(settings, threading.Event())
    assert slots.launchers["agent-1"].controller.target.vm_id == 101
    assert "duplicate slot name ignored" in caplog.text


def test_rewiring_replaces_datacenters_for_existing_controllers():
    slots.wire_slots(_settings(), threading.Event())
    controller = slots.launchers["agent-1"].controller
    slots.registry.replace([])
    with pytest.raises(DatacenterNotFoundError):
        controller.ensure_running()
