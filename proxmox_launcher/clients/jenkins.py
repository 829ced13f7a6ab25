import urllib.parse

import httpx

from proxmox_launcher.clients.http import RequestFailure, RetryPolicy, request_with_retry


class JenkinsClient:
    def __init__(
        self,
        base_url: str,
        user: str,
        api_token: str,
        retry: RetryPolicy,
        *,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.retry = retry
        self.client = httpx.Client(auth=(user, api_token), timeout=10.0, transport=transport)

    def is_node_connected(self, node_name: str) -> bool:
        node = urllib.parse.quote(node_name, safe="")
        url = f"{self.base_url}/computer/{node}/api/json?tree=offline"
        try:
            response = request_with_retry(self.client, "GET", url, self.retry)
        except RequestFailure as exc:
            # The node may not be registered yet while the VM is still booting.
            if exc.status_code == 404:
                return False
            raise
        data = response.json()
        return bool(data.get("offline") is False)
