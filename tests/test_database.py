import threading

from session.states import utc_now


def test_session_round_trip(db):
    created = db.insert_session("s1", "user1", "Standup", utc_now())

    assert created["status"] == "recording"
    assert created["transcript"] is None
    updated = db.update_session("s1", transcript="hi", status="processing")
    assert updated["transcript"] == "hi"
    assert db.get_session("missing") is None


def test_list_sessions_by_owner_newest_first(db):
    db.insert_session("old", "user1", "Old", "2026-01-01T10:00:00.000+00:00")
    db.insert_session("new", "user1", "New", "2026-01-02T10:00:00.000+00:00")
    db.insert_session("other", "user2", "Other", "2026-01-03T10:00:00.000+00:00")

    assert [s["id"] for s in db.list_sessions("user1")] == ["new", "old"]
    assert [s["id"] for s in db.list_sessions_by_status("recording")] == ["old", "new", "other"]


def test_connections_are_per_thread(db):
    db.insert_session("s1", "user1", "Standup", utc_now())
    results = []

    def read():
        results.append(db.get_session("s1")["name"])

    t = threading.Thread(target=read)
    t.start()
    t.join()

    assert results == ["Standup"]


def test_status_events_order_by_timestamp_then_seq(db):
    base = {"session_id": "s1", "status": "processing", "timestamp": "2026-01-01T10:00:00.000+00:00"}
    db.insert_status_event({**base, "id": "b", "seq": 2, "step": "second"})
    db.insert_status_event({**base, "id": "a", "seq": 1, "step": "first"})

    assert [e["step"] for e in db.list_status_events("s1")] == ["first", "second"]
