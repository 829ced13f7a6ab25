class LauncherError(RuntimeError):
    pass


class TransportError(LauncherError):
    pass


class ProtocolError(LauncherError):
    pass


class AuthError(LauncherError):
    pass


class DatacenterNotFoundError(LauncherError):
    def __init__(self, datacenter_id: str | None):
        self.datacenter_id = datacenter_id
        super().__init__(
            f"could not find the proxmox datacenter instance datacenter_id={datacenter_id}"
        )


class WaitInterruptedError(LauncherError):
    pass


class TaskTimeoutError(LauncherError):
    def __init__(self, *, node: str, handle: str, timeout_sec: float):
        self.node = node
        self.handle = handle
        self.timeout_sec = timeout_sec
        super().__init__(
            f"task did not finish within {timeout_sec}s node={node} task={handle}"
        )


class ConnectorError(LauncherError):
    pass


class ConnectTimeoutError(ConnectorError):
    pass
