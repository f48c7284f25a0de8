"""
HTTP-level tests: the import routes wired through ``create_app`` with
Graph and Microsoft identity answered by ``httpx.MockTransport`` and an
in-memory file store behind the orchestrator.
"""

from datetime import datetime, timezone

import httpx
import pytest

from api.dependencies import build_services, get_orchestrator
from auth.jwt import create_token
from connectors.encryption import CredentialVault
from connectors.token_manager import ConnectionRecord
from core.orchestrator import ImportOrchestrator
from main import create_app

from conftest import TEST_KEY, FakeConnectionStore, FakeFileStore, json_response, make_settings, mock_transport

SITE, LIST = "contoso.sharepoint.com,abc,def", "list-1"

COLUMNS = {
    "value": [
        {"name": "Title", "displayName": "Title"},
        {"name": "Status", "displayName": "Status"},
        {"name": "Assignee", "displayName": "Assigned To"},
        {"name": "Modified", "displayName": "Modified", "readOnly": True},
        {"name": "ContentType", "displayName": "Content Type", "hidden": True},
    ]
}
ITEMS = {
    "value": [
        {"id": "1", "fields": {"Title": "Launch", "Status": "Open", "Assignee": {"Email": "kim@contoso.com"}}},
        {"id": "2", "fields": {"Title": "Retro", "Status": None}},
    ]
}


def graph_handler(items=ITEMS):
    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.endswith("/oauth2/v2.0/token"):
            return json_response({"access_token": "svc-token", "expires_in": 3600})
        if path.endswith(f"/lists/{LIST}/columns"):
            return json_response(COLUMNS)
        if path.endswith(f"/lists/{LIST}/items"):
            return json_response(items)
        return json_response({"error": {"message": f"unexpected {path}"}}, 404)

    return handler


def _client(handler, file_store, connection_store=None):
    services = build_services(
        make_settings(),
        transport=mock_transport(handler),
        connection_store=connection_store or FakeConnectionStore(),
    )
    app = create_app(services, init_db=False)
    app.dependency_overrides[get_orchestrator] = lambda: ImportOrchestrator(
        {"sharepoint": services.sharepoint(), "sharepoint_oauth": services.sharepoint_oauth()},
        file_store,
    )
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")


def _auth(user_id=7, role="USER"):
    return {"Authorization": f"Bearer {create_token(user_id, role)}"}


BODY = {"siteId": SITE, "listId": LIST, "siteName": "Contoso", "listName": "Tasks"}


class TestSharePointImportRoute:
    @pytest.mark.asyncio
    async def test_import(self):
        store = FakeFileStore()
        async with _client(graph_handler(), store) as client:
            resp = await client.post("/api/v1/sharepoint/import", json=BODY, headers=_auth())

        assert resp.status_code == 200
        body = resp.json()
        assert body["rowCount"] == 2
        assert body["columnCount"] == 3
        assert body["data"] == [
            ["Title", "Status", "Assigned To"],
            ["Launch", "Open", "kim@contoso.com"],
            ["Retro", "", ""],
        ]
        assert store.files[body["fileId"]]["originalName"] == "SP: Tasks"
        assert "X-Process-Time" in resp.headers

    @pytest.mark.asyncio
    async def test_empty_list_is_400(self):
        store = FakeFileStore()
        async with _client(graph_handler({"value": []}), store) as client:
            resp = await client.post("/api/v1/sharepoint/import", json=BODY, headers=_auth())
        assert resp.status_code == 400
        assert store.files == {}

    @pytest.mark.asyncio
    async def test_requires_token(self):
        async with _client(graph_handler(), FakeFileStore()) as client:
            resp = await client.post("/api/v1/sharepoint/import", json=BODY)
        assert resp.status_code in (401, 403)

    @pytest.mark.asyncio
    async def test_graph_404_passes_through(self):
        def handler(request):
            if request.url.path.endswith("/token"):
                return json_response({"access_token": "t", "expires_in": 3600})
            return json_response({"error": {"message": "List not found"}}, 404)

        async with _client(handler, FakeFileStore()) as client:
            resp = await client.post("/api/v1/sharepoint/import", json=BODY, headers=_auth())
        assert resp.status_code == 404
        assert resp.json() == {"error": "List not found"}

    @pytest.mark.asyncio
    async def test_user_import_without_connection(self):
        async with _client(graph_handler(), FakeFileStore()) as client:
            resp = await client.post("/api/v1/sharepoint/user/import", json=BODY, headers=_auth())
        assert resp.status_code == 401
        assert resp.json()["requiresAuth"] is True


class TestRefreshRoute:
    @pytest.mark.asyncio
    async def test_other_users_file_is_forbidden(self):
        store = FakeFileStore()
        async with _client(graph_handler(), store) as client:
            created = await client.post("/api/v1/sharepoint/import", json=BODY, headers=_auth(user_id=7))
            file_id = created.json()["fileId"]

            forbidden = await client.post(f"/api/v1/imports/{file_id}/refresh", headers=_auth(user_id=8))
            refreshed = await client.post(f"/api/v1/imports/{file_id}/refresh", headers=_auth(user_id=7))
            missing = await client.post("/api/v1/imports/999/refresh", headers=_auth(user_id=7))

        assert forbidden.status_code == 403
        assert refreshed.status_code == 200
        assert refreshed.json()["rowCount"] == 2
        assert refreshed.json()["updatedAt"] == "2024-01-05T10:00:00+00:00"
        assert missing.status_code == 404

    @pytest.mark.asyncio
    async def test_admin_refresh_of_user_import_runs_as_owner(self):
        vault = CredentialVault(TEST_KEY)
        connections = FakeConnectionStore()
        connections.records[7] = ConnectionRecord(
            user_id=7,
            access_token=vault.encrypt("owner-token"),
            refresh_token=vault.encrypt("owner-refresh"),
            expires_at=datetime(2999, 1, 1, tzinfo=timezone.utc),
        )
        seen_tokens = []
        inner = graph_handler()

        def handler(request: httpx.Request) -> httpx.Response:
            seen_tokens.append(request.headers.get("Authorization"))
            return inner(request)

        store = FakeFileStore()
        async with _client(handler, store, connections) as client:
            created = await client.post("/api/v1/sharepoint/user/import", json=BODY, headers=_auth(user_id=7))
            file_id = created.json()["fileId"]
            refreshed = await client.post(f"/api/v1/imports/{file_id}/refresh", headers=_auth(user_id=1, role="ADMIN"))

        assert created.status_code == 200
        assert store.files[file_id]["sourceInfo"]["userId"] == 7
        assert refreshed.status_code == 200
        assert refreshed.json()["rowCount"] == 2
        assert set(seen_tokens) == {"Bearer owner-token"}
        assert 7 in connections.records
