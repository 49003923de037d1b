import json
import os

import pytest

from sessions import SessionSnapshot, SessionStore, new_session_id


def _snapshot(session_id, goal="Add login", timestamp=None):
    snap = SessionSnapshot(
        session_id=session_id,
        goal=goal,
        flow=[{"id": "flow_1", "type": "action", "surface": "editor", "content": {"tool": "write_file"}}],
        test_history=[{"id": "t1", "status": "passed"}],
        metadata={"iterations": 2},
    )
    if timestamp is not None:
        snap.timestamp = timestamp
    return snap


def test_save_and_load(tmp_path):
    store = SessionStore(str(tmp_path))
    path = store.save_session(_snapshot("session_1"))

    assert path == os.path.join(str(tmp_path), ".flowcode", "sessions", "session_1.json")
    assert store.current_session_id == "session_1"

    loaded = store.load_session("session_1")
    assert loaded.goal == "Add login"
    assert loaded.flow[0]["id"] == "flow_1"
    assert loaded.metadata == {"iterations": 2}


def test_file_uses_camel_case_keys(tmp_path):
    store = SessionStore(str(tmp_path))
    path = store.save_session(_snapshot("session_1"))
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    assert {"version", "sessionId", "timestamp", "goal", "flow", "testHistory", "metadata"} <= set(data)


def test_load_missing_returns_none(tmp_path):
    assert SessionStore(str(tmp_path)).load_session("session_404") is None


def test_list_newest_first_and_skips_corrupt(tmp_path):
    store = SessionStore(str(tmp_path))
    store.save_session(_snapshot("session_old", goal="old", timestamp=100.0))
    store.save_session(_snapshot("session_new", goal="new", timestamp=200.0))
    with open(os.path.join(store.base_dir, "broken.json"), "w", encoding="utf-8") as f:
        f.write("{not json")

    summaries = store.list_sessions()

    assert [s.session_id for s in summaries] == ["session_new", "session_old"]
    assert summaries[0].goal == "new"
    assert store.get_last_session().session_id == "session_new"


def test_list_without_directory(tmp_path):
    store = SessionStore(str(tmp_path))
    assert store.list_sessions() == []
    assert store.get_last_session() is None


def test_delete_session(tmp_path):
    store = SessionStore(str(tmp_path))
    store.save_session(_snapshot("session_1"))
    assert store.delete_session("session_1") is True
    assert store.delete_session("session_1") is False


def test_cleanup_keeps_newest(tmp_path):
    store = SessionStore(str(tmp_path))
    for i in range(5):
        store.save_session(_snapshot(f"session_{i}", timestamp=float(i)))

    assert store.cleanup_old_sessions(keep=2) == 3
    assert [s.session_id for s in store.list_sessions()] == ["session_4", "session_3"]


def test_export_and_import(tmp_path):
    store = SessionStore(str(tmp_path / "a"))
    store.save_session(_snapshot("session_1"))
    export_path = str(tmp_path / "exported.json")

    assert store.export_session("session_1", export_path) is True
    assert store.export_session("session_missing", export_path) is False

    other = SessionStore(str(tmp_path / "b"))
    new_id = other.import_session(export_path)
    assert new_id.startswith("session_1_imported_")
    assert other.load_session(new_id).goal == "Add login"


def test_import_bad_file_returns_none(tmp_path):
    path = tmp_path / "bad.json"
    path.write_text("{}", encoding="utf-8")
    assert SessionStore(str(tmp_path)).import_session(str(path)) is None


@pytest.mark.parametrize("session_id", ["a/b", "../escape"])
def test_import_with_unsafe_session_id_returns_none(tmp_path, session_id):
    path = tmp_path / "hostile.json"
    path.write_text(json.dumps({"sessionId": session_id, "goal": "x"}), encoding="utf-8")
    store = SessionStore(str(tmp_path / "ws"))

    assert store.import_session(str(path)) is None
    assert store.list_sessions() == []


def test_auto_save_never_raises(tmp_path):
    # A file where the sessions directory should be makes every save fail
    (tmp_path / ".flowcode").write_text("not a directory", encoding="utf-8")
    store = SessionStore(str(tmp_path))
    assert store.auto_save("session_1", "goal", [], []) is None


def test_auto_save_writes_snapshot(tmp_path):
    store = SessionStore(str(tmp_path))
    path = store.auto_save("session_1", "goal", [], [], {"turns": 3})
    assert os.path.exists(path)
    assert store.load_session("session_1").metadata == {"turns": 3}


@pytest.mark.parametrize("bad_id", ["", "..", "../escape", "a/b"])
def test_invalid_session_ids_rejected(tmp_path, bad_id):
    with pytest.raises(ValueError):
        SessionStore(str(tmp_path)).load_session(bad_id)


def test_new_session_id_format():
    assert new_session_id().startswith("session_")
    assert new_session_id()[len("session_"):].isdigit()
