import pytest

from budva.state import KeyNotFoundError, StateStore


@pytest.fixture
def store(tmp_path):
    s = StateStore(tmp_path / "db")
    s.start()
    yield s
    s.close()


def test_set_get(store):
    store.set("key1", "value1")
    assert store.get("key1") == "value1"


def test_get_not_found(store):
    with pytest.raises(KeyNotFoundError):
        store.get("missing")


def test_delete(store):
    store.set("key1", "value1")
    store.delete("key1")
    with pytest.raises(KeyNotFoundError):
        store.get("key1")


def test_get_set_atomic(store):
    store.set("counter", "0")
    assert store.get_set("counter", lambda v: v + "1") == "01"
    assert store.get("counter") == "01"


def test_get_set_missing_key_passes_empty(store):
    assert store.get_set("fresh", lambda v: f"[{v}]") == "[]"


def test_get_set_fn_error(store):
    class TransformError(Exception):
        pass

    def fail(_):
        raise TransformError("transform error")

    with pytest.raises(TransformError):
        store.get_set("key", fail)
    with pytest.raises(KeyNotFoundError):
        store.get("key")


def test_ping_ok(store):
    assert store.ping() is None


def test_ping_after_close_raises(tmp_path):
    s = StateStore(tmp_path / "db")
    s.start()
    s.close()
    with pytest.raises(RuntimeError):
        s.ping()


def test_key_not_found_is_key_error():
    err = KeyNotFoundError("k")
    assert isinstance(err, KeyError)
    assert err.key == "k"


def test_close_never_started(tmp_path):
    s = StateStore(tmp_path / "db")
    s.close()
    with pytest.raises(RuntimeError):
        s.get("x")


def test_start_on_file_fails(tmp_path):
    path = tmp_path / "db.txt"
    path.write_text("data")
    with pytest.raises(OSError):
        StateStore(path).start()


def test_context_manager_persists(tmp_path):
    with StateStore(tmp_path / "db") as s:
        s.set("a", "b")
    with StateStore(tmp_path / "db") as s:
        assert s.get("a") == "b"


@pytest.mark.parametrize(
    "stored, expected",
    [
        ("", 1),
        ("abc", 1),
        ("\x00\x00\x00\x00\x00\x00\x01", 1),
        ("\x00\x00\x00\x00\x00\x00\x00\x01", 2),
    ],
)
def test_increment_from_existing_bytes(store, stored, expected):
    store.set("k", stored)
    assert store.increment("k") == expected


def test_increment_counts(store):
    assert [store.increment("c") for _ in range(3)] == [1, 2, 3]


# --- copies ---


def test_set_copied_message_id_single_destination(store):
    store.set_copied_message_id(-100, 1, "rule1:-200:500")
    assert store.get_copied_message_ids(-100, 1) == ["rule1:-200:500"]


def test_set_copied_message_id_multiple_destinations(store):
    store.set_copied_message_id(-100, 1, "rule1:-200:500")
    store.set_copied_message_id(-100, 1, "rule1:-300:600")
    copies = store.get_copied_message_ids(-100, 1)
    assert len(copies) == 2
    assert "rule1:-200:500" in copies
    assert "rule1:-300:600" in copies


def test_set_copied_message_id_update_in_place(store):
    store.set_copied_message_id(-100, 1, "rule1:-200:500")
    store.set_copied_message_id(-100, 1, "rule1:-200:700")
    assert store.get_copied_message_ids(-100, 1) == ["rule1:-200:700"]


def test_delete_copied_message_ids(store):
    store.set_copied_message_id(-100, 1, "rule1:-200:500")
    store.delete_copied_message_ids(-100, 1)
    assert store.get_copied_message_ids(-100, 1) == []


def test_new_message_id_bidirectional(store):
    store.set_new_message_id(-200, 500, 600)
    store.set_tmp_message_id(-200, 600, 500)
    assert store.get_new_message_id(-200, 500) == 600
    assert store.get_tmp_message_id(-200, 600) == 500


def test_increment_counters(store):
    v1 = store.increment_viewed_messages(-200, "2026-04-14")
    v2 = store.increment_viewed_messages(-200, "2026-04-14")
    f1 = store.increment_forwarded_messages(-200, "2026-04-14")
    assert (v1, v2, f1) == (1, 2, 1)


def test_delete_new_message_id(store):
    store.set_new_message_id(-200, 500, 600)
    assert store.get_new_message_id(-200, 500) == 600
    store.delete_new_message_id(-200, 500)
    assert store.get_new_message_id(-200, 500) == 0


def test_delete_tmp_message_id(store):
    store.set_tmp_message_id(-200, 600, 500)
    assert store.get_tmp_message_id(-200, 600) == 500
    store.delete_tmp_message_id(-200, 600)
    assert store.get_tmp_message_id(-200, 600) == 0


def test_get_new_message_id_invalid_stored_value(store):
    store.set("newMsgId:-200:500", "not-a-number")
    assert store.get_new_message_id(-200, 500) == 0


def test_get_tmp_message_id_invalid_stored_value(store):
    store.set("tmpMsgId:-200:600", "not-a-number")
    assert store.get_tmp_message_id(-200, 600) == 0


def test_answer_message_id(store):
    store.set_answer_message_id(-200, 500, -100, 1)
    assert store.get_answer_message_id(-200, 500) == "-100:1"
    store.delete_answer_message_id(-200, 500)
    assert store.get_answer_message_id(-200, 500) == ""