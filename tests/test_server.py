"""Tests for the FastMCP server: 5 tools, 1 resource, 3 HTTP routes."""

from __future__ import annotations

import json

import httpx
import pytest
from fastmcp import Client

from artify.auth.session import create_session_token
from artify.config import Config
from artify.integrations.loudly import GenreClient
from artify.server import create_server

SECRET = "server-test-secret"
GENRES = [{"name": "synthwave"}, {"name": "lo-fi"}]


def _data(result) -> dict:
    """Extract parsed JSON from CallToolResult."""
    return json.loads(result.content[0].text)


def _genres(status: int = 200) -> GenreClient:
    return GenreClient(
        "key-123",
        "https://music.test",
        transport=httpx.MockTransport(lambda request: httpx.Response(status, json=GENRES)),
    )


@pytest.fixture
def mock_config(config: Config) -> Config:
    return config.with_overrides(mock_auth=True, jwt_secret=SECRET)


@pytest.fixture
def server(tmp_db, mock_config):
    return create_server(str(tmp_db), mock_config, genre_client=_genres())


@pytest.fixture
async def client(server):
    async with Client(server) as c:
        yield c


async def _call(client: Client, tool: str, **args) -> dict:
    return _data(await client.call_tool(tool, args))


async def test_list_tools(client: Client):
    names = {t.name for t in await client.list_tools()}
    assert names == {"ar_project", "ar_path", "ar_validate", "ar_credits", "ar_export"}


# --- ar_project ---


async def test_create_and_load(client: Client):
    created = await _call(client, "ar_project", action="create")
    assert created["_v"] == "1.0"
    assert created["stage"] == "idea"
    assert created["version"] == 0
    assert created["content"] == {}

    loaded = await _call(client, "ar_project", action="load", project_id=created["id"])
    assert loaded["id"] == created["id"]


async def test_save_and_conflict(client: Client):
    pid = (await _call(client, "ar_project", action="create"))["id"]
    content = {"finalize": {"title": "Lantern Keeper"}}

    saved = await _call(
        client, "ar_project", action="save", project_id=pid, version=0, content=content
    )
    assert saved["version"] == 1
    assert saved["title"] == "Lantern Keeper"

    stale = await _call(
        client, "ar_project", action="save", project_id=pid, version=0, content={}
    )
    assert stale["code"] == "conflict"


async def test_save_requires_version(client: Client):
    pid = (await _call(client, "ar_project", action="create"))["id"]
    data = await _call(client, "ar_project", action="save", project_id=pid, content={})
    assert "version is required" in data["error"]


async def test_list_and_archive(client: Client):
    first = (await _call(client, "ar_project", action="create"))["id"]
    await _call(client, "ar_project", action="reset")

    listing = await _call(client, "ar_project", action="list")
    assert listing["count"] == 2

    await _call(client, "ar_project", action="archive", project_id=first)
    listing = await _call(client, "ar_project", action="list")
    assert listing["count"] == 1


async def test_load_unknown(client: Client):
    data = await _call(client, "ar_project", action="load", project_id="nope")
    assert data["code"] == "not_found"


# --- ar_path ---


async def test_path_flow(client: Client):
    pid = (await _call(client, "ar_project", action="create"))["id"]

    status = await _call(client, "ar_path", action="status", project_id=pid)
    assert status["missing_steps"] == ["onboarding", "describe-idea"]

    blocked = await _call(client, "ar_path", action="advance", project_id=pid)
    assert blocked["code"] == "stage_prerequisite"

    for step in ("onboarding", "describe-idea"):
        await _call(client, "ar_path", action="complete_step", project_id=pid, step_id=step)
    moved = await _call(client, "ar_path", action="advance", project_id=pid)
    assert moved["changed"] is True
    assert moved["project"]["stage"] == "ikigai"

    back = await _call(client, "ar_path", action="goto", project_id=pid, stage="idea")
    assert back["project"]["stage"] == "idea"


async def test_update_content(client: Client):
    pid = (await _call(client, "ar_project", action="create"))["id"]
    data = await _call(
        client,
        "ar_path",
        action="update_content",
        project_id=pid,
        stage="idea",
        payload={"platform": "PC"},
    )
    assert data["content"] == {"idea": {"platform": "PC"}}


async def test_update_content_stale_version(client: Client):
    pid = (await _call(client, "ar_project", action="create"))["id"]
    await _call(client, "ar_path", action="complete_step", project_id=pid, step_id="onboarding")
    data = await _call(
        client,
        "ar_path",
        action="update_content",
        project_id=pid,
        version=0,
        stage="idea",
        payload={"platform": "PC"},
    )
    assert data["code"] == "conflict"


# --- ar_validate ---


async def test_validate_run_and_readiness(client: Client):
    pid = (await _call(client, "ar_project", action="create"))["id"]
    result = await _call(client, "ar_validate", action="run", project_id=pid, store_result=True)
    assert result["overall"] == "fail"
    assert len(result["findings"]) == 9

    loaded = await _call(client, "ar_project", action="load", project_id=pid)
    assert loaded["validation"]["overall"] == "fail"

    ready = await _call(client, "ar_validate", action="readiness", project_id=pid)
    assert ready["is_ready"] is False
    assert "=== PROJECT DETAILS ===" in ready["summary"]


async def test_enrich_needs_credits(client: Client):
    pid = (await _call(client, "ar_project", action="create"))["id"]
    data = await _call(client, "ar_validate", action="enrich", project_id=pid)
    assert data["code"] == "insufficient_credits"


async def test_enrich_with_credits(tmp_db, mock_config):
    server = create_server(
        str(tmp_db), mock_config.with_overrides(enrichment_cost=0), genre_client=_genres()
    )
    async with Client(server) as client:
        pid = (await _call(client, "ar_project", action="create"))["id"]
        await _call(
            client,
            "ar_path",
            action="update_content",
            project_id=pid,
            stage="finalize",
            payload={"game_questions": {"genre": "Synthwave"}},
        )
        data = await _call(client, "ar_validate", action="enrich", project_id=pid)
        market = data["validation"]["findings"][-1]
        assert market["agent_name"] == "genre-market"
        assert market["verdict"] == "pass"


# --- ar_credits ---


async def test_credits_balance_and_unlock(client: Client):
    balance = await _call(client, "ar_credits", action="balance")
    assert balance["balance"] == 0
    assert balance["has_access"] is False

    assert (await _call(client, "ar_credits", action="unlock"))["success"] is True
    unlocked = await _call(client, "ar_credits", action="has_unlock", feature="video")
    assert unlocked["unlocked"] is True
    assert (await _call(client, "ar_credits", action="balance"))["has_access"] is True


async def test_set_plan_requires_admin(client: Client):
    data = await _call(client, "ar_credits", action="set_plan", plan="pro")
    assert data["code"] == "unauthorized"


async def test_set_plan_as_admin(tmp_db, mock_config):
    cfg = mock_config.with_overrides(admin_emails=[mock_config.mock_user_email])
    async with Client(create_server(str(tmp_db), cfg, genre_client=_genres())) as client:
        data = await _call(client, "ar_credits", action="set_plan", plan="starter")
        assert data["balance"] == 50
        history = await _call(client, "ar_credits", action="history")
        assert history["count"] == 0


# --- ar_export ---


async def test_export_markdown(client: Client):
    pid = (await _call(client, "ar_project", action="create"))["id"]
    data = await _call(client, "ar_export", action="markdown", project_id=pid)
    assert data["filename"] == "concept.md"
    assert data["content"].startswith("# Untitled Game Concept")

    data = await _call(client, "ar_export", action="json", project_id=pid)
    assert json.loads(data["content"])["id"] == pid


# --- Sessions ---


async def test_real_auth_requires_token(tmp_db, config: Config):
    cfg = config.with_overrides(jwt_secret=SECRET)
    async with Client(create_server(str(tmp_db), cfg, genre_client=_genres())) as client:
        data = await _call(client, "ar_project", action="create")
        assert data["code"] == "unauthorized"

        token = create_session_token("u-42", "u42@example.com", SECRET)
        created = await _call(client, "ar_project", action="create", token=token)
        assert created["stage"] == "idea"

        other = create_session_token("u-43", None, SECRET)
        data = await _call(
            client, "ar_project", action="load", project_id=created["id"], token=other
        )
        assert data["code"] == "not_found"


# --- Resource ---


async def test_status_resource(client: Client):
    await _call(client, "ar_project", action="create")
    contents = await client.read_resource("ar://status")
    data = json.loads(contents[0].text)
    assert data["store"]["projects"] == 1
    assert data["sync"] == "disabled"
    assert data["recent_events"][0]["event"] == "project.created"


# --- HTTP routes ---


def _http(server) -> httpx.AsyncClient:
    app = server.http_app()
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")


async def test_video_unlock_route_mock_auth(server):
    async with _http(server) as http:
        response = await http.post("/video-unlock")
    assert response.status_code == 200
    assert response.json() == {"success": True}


async def test_video_unlock_route_needs_session(tmp_db, config: Config):
    server = create_server(str(tmp_db), config.with_overrides(jwt_secret=SECRET))
    async with _http(server) as http:
        response = await http.post("/video-unlock")
        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized"}

        token = create_session_token("u1", None, SECRET)
        response = await http.post(
            "/video-unlock", headers={"Authorization": f"Bearer {token}"}
        )
        assert response.status_code == 200


async def test_paid_video_unlock_without_credits(tmp_db, mock_config):
    server = create_server(str(tmp_db), mock_config.with_overrides(video_unlock_cost=3))
    async with _http(server) as http:
        response = await http.post("/video-unlock")
    assert response.status_code == 402
    body = response.json()
    assert body["code"] == "insufficient_credits"
    assert body["error"] == "Not enough credits: 3 needed, 0 available"


async def test_genres_route(server):
    async with _http(server) as http:
        response = await http.get("/genres")
    assert response.status_code == 200
    assert response.json() == GENRES


async def test_genres_route_upstream_status(tmp_db, mock_config):
    server = create_server(str(tmp_db), mock_config, genre_client=_genres(503))
    async with _http(server) as http:
        response = await http.get("/genres")
    assert response.status_code == 503
    assert response.json() == {"error": "Failed to fetch genres"}


async def test_genres_route_without_key(tmp_db, mock_config):
    server = create_server(str(tmp_db), mock_config)
    async with _http(server) as http:
        response = await http.get("/genres")
    assert response.status_code == 500
    assert response.json() == {"error": "LOUDLY_API_KEY not configured"}


async def test_debug_route_hides_secrets(tmp_db, mock_config):
    cfg = mock_config.with_overrides(loudly_api_key="very-secret")
    async with _http(create_server(str(tmp_db), cfg)) as http:
        response = await http.get("/debug")
    assert response.status_code == 200
    body = response.json()
    assert body["hasLoudlyKey"] is True
    assert body["mockAuth"] is True
    assert "very-secret" not in response.text
