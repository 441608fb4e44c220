import logging
from typing import Any
from urllib.parse import quote

import httpx
from pydantic import ValidationError as SchemaError

from console_gateway.clients.http import (
    NO_RETRY,
    RetryPolicy,
    request_json,
    response_failure,
    send_request,
)
from console_gateway.config import Settings
from console_gateway.errors import (
    GatewayError,
    InvalidCredentials,
    UpstreamError,
    ValidationError,
)
from console_gateway.metrics import metrics
from console_gateway.models import Action, EntityKind, SessionCredential
from console_gateway.policies import recover_optional_listing
from console_gateway.schemas import ComputeNode, Container, Snapshot, VirtualMachine
from console_gateway.session import CredentialHolder


logger = logging.getLogger(__name__)

AUTH_FAILURE_MARKER = "authentication failure"
STATE_ACTIONS = {
    EntityKind.VM: {Action.START, Action.STOP, Action.RESET},
    EntityKind.CONTAINER: {Action.START, Action.STOP},
}
RESOURCE_TYPES = {
    EntityKind.VM: {"qemu", "vm"},
    EntityKind.CONTAINER: {"lxc"},
}
EMPTY_FORM = {"Content-Type": "application/x-www-form-urlencoded"}


def _segment(value: str) -> str:
    return quote(str(value), safe="")


class UpstreamGateway:
    """Translates logical console operations into Proxmox API calls."""

    def __init__(
        self,
        settings: Settings,
        session: CredentialHolder,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings
        self.session = session
        self.config_errors = settings.validation_errors()
        self.read_retry = RetryPolicy(settings.retry_attempts, settings.retry_sleep_sec)
        self.read_timeout = httpx.Timeout(settings.read_timeout_sec)
        self.action_timeout = httpx.Timeout(settings.action_timeout_sec)
        # Redirects are never followed so credentials only reach the configured host.
        self.client = httpx.AsyncClient(
            base_url="" if self.config_errors else settings.upstream_api_url,
            verify=settings.verify_tls,
            timeout=self.read_timeout,
            follow_redirects=False,
            transport=transport,
        )

    async def __aenter__(self) -> "UpstreamGateway":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.client.aclose()

    def _ensure_configured(self) -> None:
        if self.config_errors:
            self.settings.validate_runtime()

    def _credential(self) -> SessionCredential:
        self._ensure_configured()
        return self.session.require()

    async def _get(self, path: str, **kwargs: Any) -> Any:
        credential = self._credential()
        return await request_json(
            self.client,
            "GET",
            path,
            self.read_retry,
            headers=credential.headers(),
            timeout=self.read_timeout,
            **kwargs,
        )

    async def _post_empty(self, path: str) -> str:
        credential = self._credential()
        headers = {**credential.headers(), **EMPTY_FORM}
        data = await request_json(
            self.client,
            "POST",
            path,
            NO_RETRY,
            headers=headers,
            content=b"",
            timeout=self.action_timeout,
        )
        if not isinstance(data, str) or not data:
            raise UpstreamError(
                "Upstream returned a malformed response",
                detail=f"POST {path}: expected a task id",
            )
        return data

    async def authenticate(self, identity: str, secret: str) -> SessionCredential:
        self._ensure_configured()
        response = await send_request(
            self.client,
            "POST",
            "/access/ticket",
            NO_RETRY,
            data={"username": identity, "password": secret},
            timeout=self.read_timeout,
        )
        if response.is_error:
            body = (response.text or "").lower()
            logger.warning(
                "authentication rejected user=%s status=%s",
                identity,
                response.status_code,
            )
            metrics.inc("auth_failures_total")
            if response.status_code == 401 or AUTH_FAILURE_MARKER in body:
                raise InvalidCredentials(detail=f"HTTP {response.status_code}")
            failure = response_failure(response)
            raise UpstreamError(
                "Authentication failed",
                status_code=response.status_code,
                detail=failure.detail,
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise UpstreamError(
                "Authentication failed: malformed response",
                status_code=response.status_code,
            ) from exc
        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, dict):
            data = {}
        ticket = data.get("ticket")
        csrf_token = data.get("CSRFPreventionToken")
        if not ticket or not csrf_token:
            raise UpstreamError(
                "Authentication failed: incomplete credential",
                status_code=response.status_code,
            )
        return SessionCredential(
            ticket=ticket,
            csrf_token=csrf_token,
            username=data.get("username") or identity,
        )

    async def list_nodes(self) -> list[ComputeNode]:
        data = await self._get("/nodes")
        return self._parse_list(ComputeNode, data, "/nodes")

    async def list_resources(
        self, kind: EntityKind
    ) -> list[VirtualMachine] | list[Container]:
        credential = self._credential()
        try:
            data = await request_json(
                self.client,
                "GET",
                "/cluster/resources",
                self.read_retry,
                params={"type": kind.resource_type},
                headers=credential.headers(),
                timeout=self.read_timeout,
            )
            return self._parse_entities(kind, data)
        except GatewayError as exc:
            return recover_optional_listing(kind, exc)

    async def change_state(
        self, node: str, entity_type: EntityKind, vmid: int, action: Action | str
    ) -> str:
        action = Action(action)
        if action not in STATE_ACTIONS[entity_type]:
            raise ValidationError(
                f"Action {action.value} is not supported for {entity_type.value}"
            )
        path = (
            f"/nodes/{_segment(node)}/{entity_type.path_segment}/{int(vmid)}"
            f"/status/{action.value}"
        )
        task_id = await self._post_empty(path)
        logger.info(
            "state change submitted node=%s type=%s vmid=%s action=%s task=%s",
            node,
            entity_type.value,
            vmid,
            action.value,
            task_id,
        )
        return task_id

    async def list_snapshots(self, node: str, vmid: int) -> list[Snapshot]:
        path = f"/nodes/{_segment(node)}/qemu/{int(vmid)}/snapshot"
        data = await self._get(path)
        return self._parse_list(Snapshot, data, path)

    async def rollback_snapshot(self, node: str, vmid: int, snapshot_name: str) -> str:
        if not snapshot_name:
            raise ValidationError("A snapshot name is required for rollback")
        path = (
            f"/nodes/{_segment(node)}/qemu/{int(vmid)}"
            f"/snapshot/{_segment(snapshot_name)}/rollback"
        )
        task_id = await self._post_empty(path)
        logger.info(
            "snapshot rollback submitted node=%s vmid=%s snapshot=%s task=%s",
            node,
            vmid,
            snapshot_name,
            task_id,
        )
        return task_id

    async def get_task_status(self, node: str, upid: str) -> dict:
        path = f"/nodes/{_segment(node)}/tasks/{_segment(upid)}/status"
        data = await self._get(path)
        if not isinstance(data, dict):
            raise UpstreamError(
                "Upstream returned a malformed response",
                detail=f"GET {path}: expected an object",
            )
        return data

    @staticmethod
    def _parse_list(model, data: Any, path: str) -> list:
        if not isinstance(data, list):
            raise UpstreamError(
                "Upstream returned a malformed response",
                detail=f"{path}: expected a list",
            )
        parsed = []
        for item in data:
            try:
                parsed.append(model.model_validate(item))
            except SchemaError as exc:
                # One unreadable row (e.g. status "unknown" on a node out of
                # quorum) must not hide the rest of the listing.
                logger.warning(
                    "skipping unreadable upstream row path=%s errors=%s",
                    path,
                    exc.error_count(),
                )
                metrics.inc("upstream_rows_skipped_total", model=model.__name__)
        return parsed

    @classmethod
    def _parse_entities(
        cls, kind: EntityKind, data: Any
    ) -> list[VirtualMachine] | list[Container]:
        model = VirtualMachine if kind is EntityKind.VM else Container
        if isinstance(data, list):
            # type=vm also returns lxc rows on some upstream versions.
            data = [
                item
                for item in data
                if not isinstance(item, dict)
                or item.get("type") is None
                or item["type"] in RESOURCE_TYPES[kind]
            ]
        return cls._parse_list(model, data, f"/cluster/resources?type={kind.resource_type}")
