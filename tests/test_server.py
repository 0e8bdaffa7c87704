import httpx
import pytest
import pytest_asyncio

from db import MailCacheStore
from server import CORS_HEADERS, create_app

from conftest import USER, make_message


@pytest_asyncio.fixture
async def client_for(tmp_path):
    """Yields a factory building an httpx client bound to the app with a per-test cache file."""
    db_path = str(tmp_path / "cache.sqlite3")
    clients = []

    def _make():
        app = create_app(store_factory=lambda: MailCacheStore(db_path))
        client = httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")
        clients.append(client)
        return client

    _make.db_path = db_path
    yield _make
    for client in clients:
        await client.aclose()


def request_body(imap_server, **overrides):
    body = {
        "imap_config": {
            "host": "127.0.0.1",
            "port": imap_server.port,
            "user": imap_server.user,
            "pass": imap_server.password,
        },
        "user_email": USER,
        "sync_folders": ["INBOX"],
    }
    body.update(overrides)
    return body


@pytest.mark.asyncio
async def test_options_preflight(client_for):
    response = await client_for().options("/")
    assert response.status_code == 200
    assert response.content == b""
    assert response.headers["access-control-allow-origin"] == "*"
    assert response.headers["access-control-allow-headers"] == CORS_HEADERS["Access-Control-Allow-Headers"]


@pytest.mark.asyncio
async def test_sync_success(client_for, imap_server):
    imap_server.add_folder("INBOX", 100, 51, {uid: make_message() for uid in (10, 20, 30)})

    response = await client_for().post("/", json=request_body(imap_server))

    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "*"
    assert response.json() == {
        "success": True,
        "total_synced": 3,
        "folders": [{"folder": "INBOX", "synced": 3, "status": "success"}],
    }
    async with MailCacheStore(client_for.db_path) as store:
        cursor = await store.load_sync_state(USER, "INBOX")
        assert (cursor.uid_validity, cursor.uid_next) == (100, 51)
        assert await store.count_messages(USER, "INBOX") == 3


@pytest.mark.asyncio
async def test_sync_via_named_route(client_for, imap_server):
    imap_server.add_folder("INBOX", 1, 1)
    response = await client_for().post("/imap-sync", json=request_body(imap_server))
    assert response.status_code == 200
    assert response.json()["total_synced"] == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [
    {"user_email": USER},
    {"imap_config": {"host": "imap.example.com"}},
    {"imap_config": None, "user_email": USER},
    {"imap_config": {"host": "imap.example.com"}, "user_email": ""},
    {},
])
async def test_missing_configuration(client_for, body):
    response = await client_for().post("/", json=body)
    assert response.status_code == 400
    assert response.json() == {"error": "Missing configuration"}


@pytest.mark.asyncio
@pytest.mark.parametrize("content", [b"{not json", b"[1, 2]"])
async def test_invalid_json_body(client_for, content):
    response = await client_for().post("/", content=content, headers={"content-type": "application/json"})
    assert response.status_code == 400
    assert response.json() == {"error": "Invalid JSON body"}


@pytest.mark.asyncio
async def test_incomplete_imap_config_is_a_server_error(client_for):
    body = {"imap_config": {"port": 993, "user": USER, "pass": "x"}, "user_email": USER}
    response = await client_for().post("/", json=body)
    assert response.status_code == 500
    assert response.json() == {"error": "IMAP host is missing"}


@pytest.mark.asyncio
@pytest.mark.parametrize("imap_config", [{}, [], "imap.example.com", 993])
async def test_empty_or_malformed_imap_config_fails_at_connect(client_for, imap_config):
    response = await client_for().post("/", json={"imap_config": imap_config, "user_email": USER})
    assert response.status_code == 500
    assert response.json() == {"error": "IMAP host is missing"}


@pytest.mark.asyncio
async def test_auth_failure_is_a_server_error(client_for, imap_server):
    body = request_body(imap_server)
    body["imap_config"]["pass"] = "wrong"
    response = await client_for().post("/", json=body)
    assert response.status_code == 500
    assert response.json() == {"error": "IMAP authentication failed"}
    assert response.headers["access-control-allow-origin"] == "*"


@pytest.mark.asyncio
async def test_folder_error_still_returns_200(client_for, imap_server):
    imap_server.add_folder("INBOX", 1, 2, {1: make_message()})
    response = await client_for().post("/", json=request_body(imap_server, sync_folders=["INBOX", "Missing"]))
    assert response.status_code == 200
    body = response.json()
    assert body["total_synced"] == 1
    assert body["folders"][1]["status"] == "error"
    assert "Missing" in body["folders"][1]["error"]


@pytest.mark.asyncio
async def test_get_is_not_allowed(client_for):
    response = await client_for().get("/")
    assert response.status_code == 405
