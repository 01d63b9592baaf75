import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from fake_backend import make_settings

from coventure.core.errors import BackendError, ConflictError, NotFoundError, TransientBackendError
from coventure.schemas.realtime import ChannelStatus, PushEvent, Scope
from coventure.services.backend_client import BackendClient, encode_filter
from coventure.services.realtime import RealtimeChannel


@pytest.mark.parametrize("value, expected", [
    ("abc", "eq.abc"),
    (True, "eq.true"),
    (["a", "b"], "in.(a,b)"),
    (("neq", "u1"), "neq.u1"),
    (None, "is.null"),
])
def test_encode_filter(value, expected):
    assert encode_filter(value) == expected


@pytest.mark.parametrize("status, body, error_type", [
    (409, '{"code": "23505", "message": "duplicate key"}', ConflictError),
    (400, '{"code": "23505", "message": "duplicate key"}', ConflictError),
    (406, '{"code": "PGRST116", "message": "no rows"}', NotFoundError),
    (503, "upstream down", TransientBackendError),
    (429, "", TransientBackendError),
    (400, '{"message": "bad filter"}', BackendError),
])
def test_error_mapping(status, body, error_type):
    client = BackendClient(make_settings())

    error = client._error_for(status, body, "GET", "http://backend.test/rest/v1/projects")

    assert type(error) is error_type


class RecordingSocket:
    access_token = "token"


def test_join_payload_carries_scope_filter():
    scope = Scope.for_table("chat_messages", "room_id", "r1")
    channel = RealtimeChannel(RecordingSocket(), "realtime:x", scope, lambda e: None, lambda s: None)

    payload = channel.join_payload("token")

    assert payload["config"]["postgres_changes"] == [
        {"event": "*", "schema": "public", "table": "chat_messages", "filter": "room_id=eq.r1"},
    ]
    assert payload["access_token"] == "token"


def test_channel_translates_frames():
    states, events = [], []
    scope = Scope.for_table("projects")
    channel = RealtimeChannel(RecordingSocket(), "realtime:x", scope, events.append, states.append)
    channel.join_ref = "1"

    channel.handle("phx_reply", {"status": "ok", "response": {}}, "1")
    channel.handle("postgres_changes", {"data": {
        "table": "projects", "type": "UPDATE", "record": {"id": "p1"}, "old_record": {"id": "p1"},
        "commit_timestamp": "2024-01-01T00:00:00Z",
    }}, None)
    channel.handle("phx_error", {}, None)

    assert states == [ChannelStatus.SUBSCRIBED, ChannelStatus.CHANNEL_ERROR]
    assert events == [PushEvent(table="projects", op="update", row={"id": "p1"}, old_row={"id": "p1"},
                                commit_timestamp="2024-01-01T00:00:00Z")]
