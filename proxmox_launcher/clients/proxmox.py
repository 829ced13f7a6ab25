import logging
import urllib.parse
from threading import Lock
from typing import Any

import httpx

from proxmox_launcher.clients.http import RequestFailure, RetryPolicy, request_with_retry
from proxmox_launcher.errors import AuthError, ProtocolError, TransportError
from proxmox_launcher.tasks import TaskStatus


logger = logging.getLogger(__name__)


class ProxmoxClient:
    """Minimal Proxmox VE API client covering the qemu power and snapshot calls.

    Authenticates either with a static API token or with a username/password
    ticket. A ticket that expires mid-session is renewed once on HTTP 401.
    """

    def __init__(
        self,
        api_url: str,
        retry: RetryPolicy,
        *,
        username: str | None = None,
        password: str | None = None,
        realm: str = "pam",
        api_token: str | None = None,
        verify_ssl: bool = True,
        timeout_sec: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ):
        if not api_token and not (username and password):
            raise ValueError("proxmox client needs api_token or username/password")
        self.base_url = api_url.rstrip("/")
        self.retry = retry
        self.username = username
        self.password = password
        self.realm = realm
        self.api_token = api_token
        headers = {"Authorization": f"PVEAPIToken={api_token}"} if api_token else {}
        self.client = httpx.Client(
            base_url=f"{self.base_url}/api2/json",
            timeout=timeout_sec,
            verify=verify_ssl,
            headers=headers,
            transport=transport,
        )
        self._ticket: str | None = None
        self._csrf_token: str | None = None
        self._login_lock = Lock()

    def login(self) -> None:
        if self.api_token:
            return
        user = f"{self.username}@{self.realm}"
        with self._login_lock:
            try:
                response = request_with_retry(
                    self.client,
                    "POST",
                    "/access/ticket",
                    self.retry,
                    data={"username": user, "password": self.password},
                )
            except RequestFailure as exc:
                raise AuthError(f"login failed user={user}: {exc.detail}") from exc
            data = self._data(response)
            ticket = data.get("ticket") if isinstance(data, dict) else None
            if not isinstance(ticket, str) or not ticket:
                raise AuthError(f"login response missing ticket user={user}")
            csrf = data.get("CSRFPreventionToken")
            self._ticket = ticket
            self._csrf_token = csrf if isinstance(csrf, str) else None
            logger.debug("proxmox ticket acquired url=%s user=%s", self.base_url, user)

    def is_running(self, node: str, vm_id: int) -> bool:
        data = self._call("GET", f"{self._vm_path(node, vm_id)}/status/current")
        if not isinstance(data, dict) or not isinstance(data.get("status"), str):
            raise ProtocolError(f"unexpected vm status payload vm_id={vm_id}: {data!r}")
        return data["status"] == "running"

    def start(self, node: str, vm_id: int) -> str:
        return self._submit(f"{self._vm_path(node, vm_id)}/status/start")

    def shutdown(self, node: str, vm_id: int) -> str:
        return self._submit(f"{self._vm_path(node, vm_id)}/status/shutdown")

    def stop(self, node: str, vm_id: int) -> str:
        return self._submit(f"{self._vm_path(node, vm_id)}/status/stop")

    def rollback_snapshot(self, node: str, vm_id: int, name: str) -> str:
        snapshot = urllib.parse.quote(name, safe="")
        return self._submit(f"{self._vm_path(node, vm_id)}/snapshot/{snapshot}/rollback")

    def task_status(self, node: str, handle: str) -> TaskStatus:
        upid = urllib.parse.quote(handle, safe="")
        data = self._call("GET", f"/nodes/{node}/tasks/{upid}/status")
        if not isinstance(data, dict) or not isinstance(data.get("status"), str):
            raise ProtocolError(f"unexpected task status payload task={handle}: {data!r}")
        terminal = data["status"] == "stopped"
        exit_code = data.get("exitstatus") if terminal else None
        return TaskStatus(
            terminal=terminal,
            exit_code=str(exit_code) if exit_code is not None else None,
            raw=data,
        )

    @staticmethod
    def _vm_path(node: str, vm_id: int) -> str:
        return f"/nodes/{node}/qemu/{vm_id}"

    def _submit(self, path: str) -> str:
        upid = self._call("POST", path)
        if not isinstance(upid, str) or not upid:
            raise ProtocolError(f"expected task id from POST {path}, got {upid!r}")
        return upid

    def _call(self, method: str, path: str, *, relogin: bool = True, **kwargs: Any) -> Any:
        if not self.api_token and self._ticket is None:
            self.login()
        try:
            response = request_with_retry(
                self.client, method, path, self.retry, headers=self._headers(method), **kwargs
            )
        except RequestFailure as exc:
            if exc.status_code == 401:
                if relogin and not self.api_token:
                    logger.info("proxmox ticket rejected, logging in again url=%s", self.base_url)
                    self._ticket = None
                    return self._call(method, path, relogin=False, **kwargs)
                raise AuthError(f"{method} {path} rejected: {exc.detail}") from exc
            raise TransportError(str(exc)) from exc
        return self._data(response)

    def _headers(self, method: str) -> dict[str, str]:
        headers: dict[str, str] = {}
        if self._ticket:
            headers["Cookie"] = f"PVEAuthCookie={self._ticket}"
            if method != "GET" and self._csrf_token:
                headers["CSRFPreventionToken"] = self._csrf_token
        return headers

    @staticmethod
    def _data(response: httpx.Response) -> Any:
        try:
            payload = response.json()
        except ValueError as exc:
            raise ProtocolError(f"non-json response from {response.request.url}") from exc
        if not isinstance(payload, dict) or "data" not in payload:
            raise ProtocolError(f"response without data field from {response.request.url}")
        return payload["data"]

    def close(self) -> None:
        self.client.close()
