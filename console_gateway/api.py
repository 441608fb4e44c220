import logging
from typing import Literal

import httpx
from fastapi import APIRouter, Depends, Header, Query
from fastapi.responses import JSONResponse

from console_gateway.clients.upstream import UpstreamGateway
from console_gateway.config import get_settings
from console_gateway.errors import (
    AUTH_ERRORS,
    ConfigurationError,
    GatewayError,
    NotAuthenticated,
    ValidationError,
)
from console_gateway.metrics import metrics
from console_gateway.models import (
    Action,
    EntityKind,
    EntityRef,
    EntityStatus,
    LifecycleCommand,
)
from console_gateway.schemas import (
    ActionRequest,
    ActionResponse,
    AuthRequest,
    DashboardResponse,
)
from console_gateway.services.aggregator import ResourceAggregator
from console_gateway.services.dispatcher import LifecycleDispatcher, restorable
from console_gateway.session import CredentialHolder


router = APIRouter()
logger = logging.getLogger(__name__)


def get_upstream_transport() -> httpx.AsyncBaseTransport | None:
    return None


def get_session(
    authorization: str | None = Header(default=None),
    csrf_token: str | None = Header(default=None, alias="CSRFPreventionToken"),
) -> CredentialHolder:
    return CredentialHolder.from_headers(authorization, csrf_token)


async def get_gateway(
    session: CredentialHolder = Depends(get_session),
    transport: httpx.AsyncBaseTransport | None = Depends(get_upstream_transport),
):
    gateway = UpstreamGateway(get_settings(), session, transport=transport)
    try:
        yield gateway
    finally:
        await gateway.aclose()


def status_code_for(exc: GatewayError) -> int:
    if isinstance(exc, NotAuthenticated):
        return 401
    if isinstance(exc, ValidationError):
        return 400
    if isinstance(exc, ConfigurationError):
        return 503
    return 500


def error_response(exc: GatewayError, operation: str) -> JSONResponse:
    payload = exc.to_payload()
    if not isinstance(exc, (NotAuthenticated, ValidationError, ConfigurationError)):
        payload["error"] = f"Failed to {operation}"
    logger.warning(
        "operation failed operation=%s kind=%s detail=%s",
        operation,
        exc.kind,
        exc.detail,
    )
    return JSONResponse(status_code=status_code_for(exc), content=payload)


def _entity_label(kind: EntityKind, vmid: int) -> str:
    return f"{'VM' if kind is EntityKind.VM else 'LXC'} {vmid}"


@router.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/metrics")
def metrics_endpoint() -> dict[str, int]:
    return metrics.snapshot()


@router.get("/api/config")
def client_config():
    try:
        settings = get_settings()
        settings.validate_runtime()
    except ConfigurationError as exc:
        return JSONResponse(status_code=400, content=exc.to_payload())
    return {"success": True, "config": settings.client_config()}


@router.post("/api/proxmox/auth")
async def authenticate(
    req: AuthRequest,
    transport: httpx.AsyncBaseTransport | None = Depends(get_upstream_transport),
):
    logger.info("authentication attempt user=%s", req.username)
    session = CredentialHolder()
    async with UpstreamGateway(get_settings(), session, transport=transport) as gateway:
        try:
            credential = await session.authenticate(gateway, req.username, req.password)
        except ConfigurationError as exc:
            return error_response(exc, "authenticate")
        except AUTH_ERRORS as exc:
            logger.warning(
                "authentication failed user=%s kind=%s", req.username, exc.kind
            )
            return JSONResponse(status_code=401, content=exc.to_payload())
    return {"data": credential.to_upstream()}


@router.get("/api/proxmox/nodes")
async def list_nodes(gateway: UpstreamGateway = Depends(get_gateway)):
    try:
        nodes = await gateway.list_nodes()
    except GatewayError as exc:
        return error_response(exc, "fetch nodes")
    return {"data": [node.to_upstream() for node in nodes]}


@router.get("/api/proxmox/cluster/resources")
async def cluster_resources(
    type: Literal["vm", "lxc"] = Query(default="vm"),
    gateway: UpstreamGateway = Depends(get_gateway),
):
    kind = EntityKind.from_resource_type(type)
    try:
        entities = await gateway.list_resources(kind)
    except GatewayError as exc:
        return error_response(exc, "fetch cluster resources")
    return {"data": [entity.to_upstream() for entity in entities]}


@router.post("/api/proxmox/nodes/{node}/qemu/{vmid}/status/{action}")
async def vm_status_change(
    node: str,
    vmid: int,
    action: Literal["start", "stop", "reset"],
    gateway: UpstreamGateway = Depends(get_gateway),
):
    try:
        task_id = await gateway.change_state(node, EntityKind.VM, vmid, action)
    except GatewayError as exc:
        return error_response(exc, f"{action} {_entity_label(EntityKind.VM, vmid)}")
    return {"data": task_id}


@router.post("/api/proxmox/nodes/{node}/lxc/{vmid}/status/{action}")
async def container_status_change(
    node: str,
    vmid: int,
    action: Literal["start", "stop"],
    gateway: UpstreamGateway = Depends(get_gateway),
):
    try:
        task_id = await gateway.change_state(node, EntityKind.CONTAINER, vmid, action)
    except GatewayError as exc:
        return error_response(
            exc, f"{action} {_entity_label(EntityKind.CONTAINER, vmid)}"
        )
    return {"data": task_id}


@router.get("/api/proxmox/nodes/{node}/qemu/{vmid}/snapshot")
async def list_snapshots(
    node: str,
    vmid: int,
    restorable_only: bool = Query(default=False, alias="restorable"),
    gateway: UpstreamGateway = Depends(get_gateway),
):
    try:
        snapshots = await gateway.list_snapshots(node, vmid)
    except GatewayError as exc:
        return error_response(exc, f"get snapshots for VM {vmid}")
    if restorable_only:
        snapshots = restorable(snapshots)
    return {"data": [snap.to_upstream() for snap in snapshots]}


@router.post("/api/proxmox/nodes/{node}/qemu/{vmid}/snapshot/{snapname}/rollback")
async def rollback_snapshot(
    node: str,
    vmid: int,
    snapname: str,
    gateway: UpstreamGateway = Depends(get_gateway),
):
    try:
        task_id = await gateway.rollback_snapshot(node, vmid, snapname)
    except GatewayError as exc:
        return error_response(exc, f"rollback VM {vmid} to snapshot {snapname}")
    return {"data": task_id}


@router.get("/api/proxmox/nodes/{node}/tasks/{upid}/status")
async def task_status(
    node: str, upid: str, gateway: UpstreamGateway = Depends(get_gateway)
):
    try:
        status = await gateway.get_task_status(node, upid)
    except GatewayError as exc:
        return error_response(exc, "get task status")
    return {"data": status}


@router.get("/api/dashboard", response_model=DashboardResponse)
async def dashboard(gateway: UpstreamGateway = Depends(get_gateway)):
    try:
        snapshot = await ResourceAggregator(gateway).load_all()
    except GatewayError as exc:
        return error_response(exc, "load dashboard data")
    return DashboardResponse(
        nodes=[node.to_upstream() for node in snapshot.nodes],
        vms=[vm.to_upstream() for vm in snapshot.vms],
        containers=[ct.to_upstream() for ct in snapshot.containers],
        warnings=snapshot.warnings,
    )


@router.post("/api/actions", response_model=ActionResponse)
async def dispatch_action(
    req: ActionRequest, gateway: UpstreamGateway = Depends(get_gateway)
):
    kind = EntityKind.from_resource_type(req.type)
    target = EntityRef(
        vmid=req.vmid,
        node=req.node,
        kind=kind,
        status=EntityStatus(req.status),
        name=req.name,
    )
    command = LifecycleCommand(
        action=Action(req.action), target=target, snapshot_name=req.snapname
    )
    try:
        result = await LifecycleDispatcher(gateway).dispatch(command)
    except GatewayError as exc:
        return error_response(exc, f"{req.action} {target.label}")
    return ActionResponse(
        action=result.action.value,
        vmid=target.vmid,
        node=target.node,
        task_id=result.task_id,
        console_url=result.console_url,
        refresh_after_sec=result.refresh_after_sec,
        expected_status=(
            result.expected_status.value if result.expected_status else None
        ),
    )
