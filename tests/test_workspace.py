import asyncio
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

from fake_backend import FakeBackend, make_settings, make_workspace

from coventure.core.security import create_access_token
from coventure.schemas.auth import CurrentUser
from coventure.schemas.realtime import ChannelStatus
from coventure.services.workspace import DEGRADED_MESSAGE, WorkspaceRegistry


def test_degraded_feed_warns_and_can_be_refreshed():
    async def scenario():
        backend = FakeBackend(channel_status=ChannelStatus.TIMED_OUT)
        workspace = make_workspace(backend)
        await workspace.projects.open_feed()
        await workspace.subscriptions.settle()
        degraded = workspace.status()

        backend.channel_status = ChannelStatus.SUBSCRIBED
        await workspace.refresh_live_updates()
        return workspace, degraded

    workspace, degraded = asyncio.run(scenario())

    assert degraded["degraded"] is True
    assert workspace.notices[-1].level == "warning"
    assert workspace.notices[-1].message == DEGRADED_MESSAGE
    assert workspace.status()["degraded"] is False


def test_live_feed_receives_store_changes_and_notices():
    async def scenario():
        backend = FakeBackend()
        workspace = make_workspace(backend)
        queue = workspace.open_live_feed()
        await workspace.projects.open_feed()
        backend.push("projects", "insert", {
            "id": "p1", "creator_id": "user-2", "title": "T", "description": "d", "timeline": "t",
            "created_at": "2024-01-01T00:00:00+00:00",
        })
        workspace.close_live_feed(queue)
        backend.push("projects", "insert", {
            "id": "p2", "creator_id": "user-2", "title": "T2", "description": "d", "timeline": "t",
            "created_at": "2024-01-01T00:00:01+00:00",
        })
        items = []
        while not queue.empty():
            items.append(queue.get_nowait())
        return items

    items = asyncio.run(scenario())

    changes = [i for i in items if i["type"] == "change"]
    assert [c["id"] for c in changes] == ["p1"]
    assert any(i["type"] == "subscription" and i["state"] == "subscribed" for i in items)


def test_registry_reuses_workspace_and_tracks_new_tokens():
    async def scenario():
        registry = WorkspaceRegistry(make_settings(), backend_factory=lambda settings, access_token: FakeBackend())
        first = await registry.get(CurrentUser(user_id="user-1", access_token="a"))
        second = await registry.get(CurrentUser(user_id="user-1", access_token="b"))
        await registry.remove("user-1")
        return registry, first, second

    registry, first, second = asyncio.run(scenario())

    assert first is second
    assert first.backend.access_token is None
    assert "user-1" not in registry


def test_new_token_replaces_session_expiry():
    async def scenario():
        registry = WorkspaceRegistry(make_settings(), backend_factory=lambda settings, access_token: FakeBackend())
        await registry.get(CurrentUser(user_id="user-1", access_token="a"))
        fresh = create_access_token("user-1", "test-secret", expires_in=600)
        workspace = await registry.get(CurrentUser(user_id="user-1", access_token=fresh))
        return workspace, fresh

    workspace, fresh = asyncio.run(scenario())

    assert workspace.session.access_token == fresh
    assert workspace.backend.access_token == fresh
    assert workspace.session.expires_at > datetime.now(timezone.utc) + timedelta(minutes=5)


def test_feed_reloads_projects_created_during_an_outage():
    async def scenario():
        backend = FakeBackend()
        workspace = make_workspace(backend)
        await workspace.projects.open_feed()

        backend.open_channels()[0].emit_state(ChannelStatus.TIMED_OUT)
        backend.seed("projects", creator_id="user-2", title="Missed", description="d", timeline="t")
        await workspace.subscriptions.settle()
        return workspace

    workspace = asyncio.run(scenario())

    assert [p.title for p in workspace.projects.feed()] == ["Missed"]
