import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

from coventure.schemas.chat import ChatMessageRead
from coventure.schemas.realtime import PushEvent
from coventure.services.store import ReconcilingStore


def message(id, content, created_at, room="room-1", sender="user-1"):
    return {"id": id, "room_id": room, "sender_id": sender, "content": content, "created_at": created_at}


T1 = "2024-01-01T10:00:01+00:00"
T2 = "2024-01-01T10:00:02+00:00"
T3 = "2024-01-01T10:00:03+00:00"


def contents(store):
    return [m.content for m in store.list("chat_messages")]


def test_push_insert_is_idempotent():
    store = ReconcilingStore()
    event = PushEvent(table="chat_messages", op="insert", row=message("m1", "hola", T1))

    store.ingest_push_event(event)
    store.ingest_push_event(event)

    assert [m.id for m in store.list("chat_messages")] == ["m1"]


def test_order_converges_regardless_of_interleaving():
    rows = [message("m1", "one", T1), message("m2", "two", T2), message("m3", "three", T3)]

    pushed_first = ReconcilingStore()
    pushed_first.ingest_push_event(PushEvent(table="chat_messages", op="insert", row=rows[2]))
    pushed_first.ingest_snapshot("chat_messages", rows[:2])

    fetched_first = ReconcilingStore()
    fetched_first.ingest_snapshot("chat_messages", rows[:2])
    fetched_first.ingest_push_event(PushEvent(table="chat_messages", op="insert", row=rows[2]))

    scrambled = ReconcilingStore()
    scrambled.ingest_push_event(PushEvent(table="chat_messages", op="insert", row=rows[1]))
    scrambled.ingest_snapshot("chat_messages", rows)
    scrambled.ingest_push_event(PushEvent(table="chat_messages", op="insert", row=rows[0]))

    for store in (pushed_first, fetched_first, scrambled):
        assert contents(store) == ["one", "two", "three"]


def test_optimistic_message_reconciles_with_confirmed_push():
    store = ReconcilingStore()
    placeholder = ChatMessageRead(id="pending", room_id="room-1", sender_id="user-1", content="hi", pending=True)
    token = store.apply_optimistic("chat_messages", placeholder)
    assert store.is_pending(token)
    assert len(store.list("chat_messages")) == 1

    sent_at = store.get("chat_messages", token).created_at.isoformat()
    confirmed = message("m1", "hi", sent_at)

    # el push llega antes que la respuesta del insert
    store.ingest_push_event(PushEvent(table="chat_messages", op="insert", row=confirmed))
    assert [m.id for m in store.list("chat_messages")] == ["m1"]

    store.confirm_optimistic("chat_messages", token, confirmed)

    visible = store.list("chat_messages")
    assert [m.id for m in visible] == ["m1"]
    assert not store.is_pending(token)
    assert store.get("chat_messages", token).id == "m1"


def test_rollback_removes_placeholder():
    store = ReconcilingStore()
    placeholder = ChatMessageRead(id="pending", room_id="room-1", sender_id="user-1", content="hi")
    token = store.apply_optimistic("chat_messages", placeholder)

    store.rollback_optimistic(token)

    assert store.list("chat_messages") == []
    assert store.get("chat_messages", token) is None


def test_stale_update_is_discarded():
    store = ReconcilingStore()
    store.ingest_snapshot("projects", [{
        "id": "p1", "creator_id": "u1", "title": "T", "description": "D", "timeline": "3 months",
        "status": "in_progress", "created_at": T1, "updated_at": T3,
    }])

    store.ingest_push_event(PushEvent(table="projects", op="update", row={
        "id": "p1", "creator_id": "u1", "title": "T", "description": "D", "timeline": "3 months",
        "status": "open", "created_at": T1, "updated_at": T2,
    }))

    assert store.get("projects", "p1").status == "in_progress"


def test_push_delete_is_not_resurrected_by_late_snapshot():
    store = ReconcilingStore()
    row = message("m1", "bye", T1)
    store.ingest_snapshot("chat_messages", [row])

    store.ingest_push_event(PushEvent(table="chat_messages", op="delete", old_row={"id": "m1"}))
    store.ingest_snapshot("chat_messages", [row])

    assert store.list("chat_messages") == []


def test_optimistic_update_overlays_and_rolls_back():
    store = ReconcilingStore()
    store.ingest_snapshot("project_applications", [{
        "id": "a1", "project_id": "p1", "applicant_id": "u2", "status": "pending", "created_at": T1,
    }])

    token = store.apply_optimistic_update("project_applications", "a1", {"status": "accepted"})
    assert store.get("project_applications", "a1").status == "accepted"
    assert store.is_pending("a1")

    store.rollback_optimistic(token)
    assert store.get("project_applications", "a1").status == "pending"
    assert not store.is_pending("a1")


def test_listeners_receive_changes():
    store = ReconcilingStore()
    changes = []
    store.add_listener(changes.append)

    store.ingest_snapshot("chat_messages", [message("m1", "hola", T1)])
    store.ingest_push_event(PushEvent(table="chat_messages", op="delete", old_row={"id": "m1"}))

    assert [(c.op, c.id) for c in changes] == [("upsert", "m1"), ("delete", "m1")]
