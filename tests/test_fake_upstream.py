import os

from fastapi.testclient import TestClient

from fake_upstream.config import get_settings


os.environ.pop("FAKE_UPSTREAM_SUPPORTS_CONTAINERS", None)
get_settings.cache_clear()

from fake_upstream.app import app, reset_state  # noqa: E402


def setup_function() -> None:
    get_settings.cache_clear()
    reset_state()


def _headers(client: TestClient) -> dict[str, str]:
    response = client.post(
        "/api2/json/access/ticket",
        content="username=root%40pam&password=secret",
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )
    assert response.status_code == 200
    data = response.json()["data"]
    return {
        "Authorization": f"PVEAuthCookie={data['ticket']}",
        "CSRFPreventionToken": data["CSRFPreventionToken"],
    }


def test_fake_upstream_rejects_bad_password() -> None:
    client = TestClient(app)
    response = client.post(
        "/api2/json/access/ticket",
        content="username=root%40pam&password=wrong",
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )
    assert response.status_code == 401
    assert response.json()["message"] == "authentication failure"


def test_fake_upstream_requires_csrf_token() -> None:
    client = TestClient(app)
    headers = _headers(client)
    headers["CSRFPreventionToken"] = "forged"
    assert client.get("/api2/json/nodes", headers=headers).status_code == 401


def test_fake_upstream_vm_lifecycle() -> None:
    client = TestClient(app)
    headers = _headers(client)
    start = client.post("/api2/json/nodes/pve1/qemu/101/status/start", headers=headers)
    assert start.status_code == 200
    assert ":qmstart:101:root@pam:" in start.json()["data"]
    again = client.post("/api2/json/nodes/pve1/qemu/101/status/start", headers=headers)
    assert again.status_code == 500
    stop = client.post("/api2/json/nodes/pve1/qemu/101/status/stop", headers=headers)
    assert stop.status_code == 200


def test_fake_upstream_vm_listing_includes_containers() -> None:
    client = TestClient(app)
    headers = _headers(client)
    rows = client.get("/api2/json/cluster/resources?type=vm", headers=headers).json()["data"]
    assert {row["type"] for row in rows} == {"qemu", "lxc"}
