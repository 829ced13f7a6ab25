import logging
from collections.abc import Callable, Iterable
from threading import Lock

from proxmox_launcher.errors import DatacenterNotFoundError
from proxmox_launcher.tasks import HypervisorConnection


logger = logging.getLogger(__name__)


class Datacenter:
    """A configured Proxmox cluster, identified by its human-chosen name."""

    def __init__(
        self, name: str, connection_factory: Callable[[], HypervisorConnection]
    ):
        self.name = name
        self._connection_factory = connection_factory
        self._connection: HypervisorConnection | None = None
        self._lock = Lock()

    def connection(self) -> HypervisorConnection:
        with self._lock:
            if self._connection is None:
                self._connection = self._connection_factory()
            return self._connection

    def close(self) -> None:
        with self._lock:
            connection, self._connection = self._connection, None
        if connection is not None:
            connection.close()


class DatacenterRegistry:
    def __init__(self, datacenters: Iterable[Datacenter] = ()) -> None:
        self._lock = Lock()
        self._datacenters: list[Datacenter] = list(datacenters)

    def replace(self, datacenters: Iterable[Datacenter]) -> None:
        new_set = list(datacenters)
        with self._lock:
            old_set, self._datacenters = self._datacenters, new_set
        logger.info(
            "datacenters reconfigured names=%s", [dc.name for dc in new_set]
        )
        for datacenter in old_set:
            if datacenter not in new_set:
                datacenter.close()

    def close(self) -> None:
        with self._lock:
            datacenters = list(self._datacenters)
        for datacenter in datacenters:
            datacenter.close()

    def names(self) -> list[str]:
        with self._lock:
            return [dc.name for dc in self._datacenters]

    def find_by_identifier(self, datacenter_id: str | None) -> HypervisorConnection:
        if datacenter_id:
            with self._lock:
                candidates = list(self._datacenters)
            # Names are unique by configuration; first match wins otherwise.
            for datacenter in candidates:
                if datacenter.name == datacenter_id:
                    return datacenter.connection()
        raise DatacenterNotFoundError(datacenter_id)


def resolve(registry: DatacenterRegistry, datacenter_id: str | None) -> HypervisorConnection:
    return registry.find_by_identifier(datacenter_id)
