import logging
import threading
from collections.abc import Callable

from proxmox_launcher.clients.http import RetryPolicy
from proxmox_launcher.clients.jenkins import JenkinsClient
from proxmox_launcher.clients.proxmox import ProxmoxClient
from proxmox_launcher.config import DatacenterConfig, Settings, SlotConfig
from proxmox_launcher.connectors import CommandConnector, DelegateConnector, InboundAgentConnector
from proxmox_launcher.datacenters import Datacenter, DatacenterRegistry
from proxmox_launcher.services.launcher import VirtualMachineLauncher
from proxmox_launcher.services.lifecycle import LifecycleController, StartPolicy, VmTarget


logger = logging.getLogger(__name__)

registry = DatacenterRegistry()
launchers: dict[str, VirtualMachineLauncher] = {}


def _proxmox_factory(
    config: DatacenterConfig, settings: Settings
) -> Callable[[], ProxmoxClient]:
    def factory() -> ProxmoxClient:
        return ProxmoxClient(
            config.api_url,
            RetryPolicy(settings.retry_attempts, settings.retry_sleep_sec),
            username=config.username,
            password=config.password,
            realm=config.realm,
            api_token=config.api_token,
            verify_ssl=config.verify_ssl,
            timeout_sec=settings.http_timeout_sec,
        )

    return factory


def build_datacenters(settings: Settings) -> list[Datacenter]:
    return [
        Datacenter(config.name, _proxmox_factory(config, settings))
        for config in settings.datacenters
    ]


def _build_jenkins_client(settings: Settings) -> JenkinsClient | None:
    if not settings.jenkins_url:
        return None
    retry = RetryPolicy(settings.retry_attempts, settings.retry_sleep_sec)
    return JenkinsClient(
        base_url=settings.jenkins_url,
        user=settings.jenkins_user,
        api_token=settings.jenkins_api_token,
        retry=retry,
    )


def build_connector(
    slot: SlotConfig,
    settings: Settings,
    jenkins: JenkinsClient | None,
    cancel: threading.Event,
) -> DelegateConnector:
    if slot.connector == "command":
        return CommandConnector(slot.connect_command, timeout_sec=settings.connect_deadline_sec)
    return InboundAgentConnector(
        jenkins,
        slot.jenkins_node or slot.name,
        connect_deadline_sec=settings.connect_deadline_sec,
        poll_interval_sec=settings.connect_poll_interval_sec,
        cancel=cancel,
    )


def build_launcher(
    slot: SlotConfig,
    settings: Settings,
    registry: DatacenterRegistry,
    delegate: DelegateConnector,
    cancel: threading.Event,
) -> VirtualMachineLauncher:
    controller = LifecycleController(
        VmTarget(datacenter_id=slot.datacenter, node=slot.node, vm_id=slot.vm_id),
        registry,
        snapshot_name=slot.snapshot_name,
        start_policy=StartPolicy(
            start_vm=slot.start_vm, settle_delay_sec=slot.settle_delay_sec
        ),
        revert_policy=slot.revert_policy,
        delegate_reports_readiness=delegate.reports_readiness,
        poll_interval_sec=settings.task_poll_interval_sec,
        task_timeout_sec=settings.task_timeout_sec,
        cancel=cancel,
    )
    return VirtualMachineLauncher(delegate, controller)


def wire_slots(settings: Settings, cancel: threading.Event) -> None:
    registry.replace(build_datacenters(settings))
    jenkins = _build_jenkins_client(settings)
    wired: dict[str, VirtualMachineLauncher] = {}
    for slot in settings.slots:
        if slot.name in wired:
            logger.warning("duplicate slot name ignored slot=%s", slot.name)
            continue
        if slot.datacenter not in registry.names():
            logger.warning(
                "slot references unknown datacenter slot=%s datacenter=%s",
                slot.name,
                slot.datacenter,
            )
        delegate = build_connector(slot, settings, jenkins, cancel)
        wired[slot.name] = build_launcher(slot, settings, registry, delegate, cancel)
    launchers.clear()
    launchers.update(wired)
    logger.info("slots wired count=%s names=%s", len(wired), sorted(wired))
