import secrets
import time
from threading import Lock
from urllib.parse import parse_qs

from fastapi import APIRouter, FastAPI, Header, Request
from fastapi.responses import JSONResponse

from fake_upstream.config import get_settings


app = FastAPI(title="Fake Proxmox API")
router = APIRouter(prefix="/api2/json")

GiB = 1024**3
_lock = Lock()
_tickets: dict[str, tuple[str, str]] = {}
_guests: dict[int, dict] = {}
_snapshots: dict[int, list[dict]] = {}
_tasks: dict[str, dict] = {}


def _seed() -> None:
    nodes = get_settings().node_names or ["pve1"]
    first = nodes[0]
    last = nodes[-1]
    _guests.clear()
    _guests.update(
        {
            100: {
                "type": "qemu",
                "vmid": 100,
                "name": "web-01",
                "node": first,
                "status": "running",
                "uptime": 3600,
            },
            101: {
                "type": "qemu",
                "vmid": 101,
                "name": "db-01",
                "node": first,
                "status": "stopped",
            },
            102: {
                "type": "qemu",
                "vmid": 102,
                "name": "win-desk",
                "node": last,
                "status": "suspended",
            },
            200: {
                "type": "lxc",
                "vmid": 200,
                "name": "dns",
                "node": last,
                "status": "running",
                "uptime": 7200,
            },
        }
    )
    for guest in _guests.values():
        running = guest["status"] == "running"
        guest.update(
            cpu=0.12 if running else 0.0,
            mem=GiB if running else 0,
            maxmem=4 * GiB,
            disk=8 * GiB,
            maxdisk=32 * GiB,
            template=0,
        )
    _snapshots.clear()
    _snapshots[100] = [
        {
            "name": "before-upgrade",
            "description": "pre 8.2",
            "snaptime": 1700000000,
            "vmstate": 0,
        },
        {
            "name": "current",
            "description": "You are here!",
            "parent": "before-upgrade",
            "running": 1,
        },
    ]
    _tasks.clear()


def reset_state() -> None:
    with _lock:
        _tickets.clear()
        _seed()


reset_state()


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"data": None, "message": message})


def _authorized(authorization: str | None, csrf_token: str | None) -> bool:
    if not authorization or not authorization.startswith("PVEAuthCookie="):
        return False
    ticket = authorization.split("=", 1)[1]
    with _lock:
        issued = _tickets.get(ticket)
    return issued is not None and issued[1] == csrf_token


def _new_task(node: str, kind: str, vmid: int, user: str) -> str:
    upid = (
        f"UPID:{node}:{secrets.token_hex(4).upper()}:{int(time.time()):08X}:"
        f"{kind}:{vmid}:{user}:"
    )
    _tasks[upid] = {
        "upid": upid,
        "node": node,
        "type": kind,
        "id": str(vmid),
        "user": user,
        "status": "stopped",
        "exitstatus": "OK",
    }
    return upid


@router.post("/access/ticket")
async def ticket(request: Request):
    settings = get_settings()
    form = parse_qs((await request.body()).decode("utf-8"))
    username = (form.get("username") or [""])[0]
    password = (form.get("password") or [""])[0]
    if username != settings.username or password != settings.password:
        return _error(401, "authentication failure")
    token = f"PVE:{username}:{secrets.token_hex(8).upper()}"
    csrf = f"{secrets.token_hex(4).upper()}:{secrets.token_urlsafe(16)}"
    with _lock:
        _tickets[token] = (username, csrf)
    return {"data": {"ticket": token, "CSRFPreventionToken": csrf, "username": username}}


@router.get("/nodes")
def nodes(
    authorization: str | None = Header(default=None),
    csrf_token: str | None = Header(default=None, alias="CSRFPreventionToken"),
):
    if not _authorized(authorization, csrf_token):
        return _error(401, "No ticket")
    return {
        "data": [
            {"node": name, "status": "online", "cpu": 0.05, "maxcpu": 8,
             "mem": 8 * GiB, "maxmem": 32 * GiB, "disk": 20 * GiB,
             "maxdisk": 100 * GiB, "uptime": 86400, "level": ""}
            for name in get_settings().node_names
        ]
    }


@router.get("/cluster/resources")
def cluster_resources(
    type: str | None = None,
    authorization: str | None = Header(default=None),
    csrf_token: str | None = Header(default=None, alias="CSRFPreventionToken"),
):
    if not _authorized(authorization, csrf_token):
        return _error(401, "No ticket")
    if type == "lxc" and not get_settings().supports_containers:
        return _error(400, "Parameter verification failed.")
    with _lock:
        rows = [dict(guest) for guest in _guests.values()]
    if not get_settings().supports_containers:
        rows = [row for row in rows if row["type"] != "lxc"]
    if type == "lxc":
        rows = [row for row in rows if row["type"] == "lxc"]
    return {"data": rows}


@router.post("/nodes/{node}/{guest_type}/{vmid}/status/{action}")
def status_change(
    node: str,
    guest_type: str,
    vmid: int,
    action: str,
    authorization: str | None = Header(default=None),
    csrf_token: str | None = Header(default=None, alias="CSRFPreventionToken"),
):
    if not _authorized(authorization, csrf_token):
        return _error(401, "No ticket")
    if guest_type not in {"qemu", "lxc"} or action not in {"start", "stop", "reset"}:
        return _error(501, f"Method 'POST /nodes/{node}/{guest_type}/{vmid}/status/{action}' not implemented")
    if guest_type == "lxc" and action == "reset":
        return _error(501, "Method not implemented")
    with _lock:
        guest = _guests.get(vmid)
        if guest is None or guest["node"] != node or guest["type"] != guest_type:
            return _error(500, f"Configuration file for {vmid} does not exist")
        if action == "start" and guest["status"] == "running":
            return _error(500, f"VM {vmid} already running")
        if action in {"stop", "reset"} and guest["status"] != "running":
            return _error(500, f"VM {vmid} not running")
        guest["status"] = "stopped" if action == "stop" else "running"
        user = authorization.split(":")[1] if authorization else ""
        prefix = "qm" if guest_type == "qemu" else "vz"
        return {"data": _new_task(node, f"{prefix}{action}", vmid, user)}


@router.get("/nodes/{node}/qemu/{vmid}/snapshot")
def snapshots(
    node: str,
    vmid: int,
    authorization: str | None = Header(default=None),
    csrf_token: str | None = Header(default=None, alias="CSRFPreventionToken"),
):
    if not _authorized(authorization, csrf_token):
        return _error(401, "No ticket")
    with _lock:
        guest = _guests.get(vmid)
        if guest is None or guest["node"] != node:
            return _error(500, f"Configuration file for {vmid} does not exist")
        rows = _snapshots.get(vmid) or [{"name": "current", "description": "You are here!"}]
        return {"data": [dict(row) for row in rows]}


@router.post("/nodes/{node}/qemu/{vmid}/snapshot/{snapname}/rollback")
def rollback(
    node: str,
    vmid: int,
    snapname: str,
    authorization: str | None = Header(default=None),
    csrf_token: str | None = Header(default=None, alias="CSRFPreventionToken"),
):
    if not _authorized(authorization, csrf_token):
        return _error(401, "No ticket")
    with _lock:
        names = {row["name"] for row in _snapshots.get(vmid, []) if row["name"] != "current"}
        if snapname not in names:
            return _error(500, f"snapshot '{snapname}' does not exist")
        user = authorization.split(":")[1] if authorization else ""
        return {"data": _new_task(node, "qmrollback", vmid, user)}


@router.get("/nodes/{node}/tasks/{upid}/status")
def task_status(
    node: str,
    upid: str,
    authorization: str | None = Header(default=None),
    csrf_token: str | None = Header(default=None, alias="CSRFPreventionToken"),
):
    if not _authorized(authorization, csrf_token):
        return _error(401, "No ticket")
    with _lock:
        task = _tasks.get(upid)
    if task is None or task["node"] != node:
        return _error(500, "no such task")
    return {"data": dict(task)}


app.include_router(router)
