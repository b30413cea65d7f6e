import threading

from ragchat.memory.store import SessionActivityTracker, SessionDocumentStore
from conftest import make_doc


def _store():
    s = SessionDocumentStore()
    s.init()
    return s


def test_add_get_remove_and_delete_session():
    s = _store()
    s.add_document("S", make_doc("d1", ["a"], [[1.0]]))
    s.add_document("S", make_doc("d2", ["b"], [[1.0]]))
    assert set(s.get_documents("S")) == {"d1", "d2"}
    assert s.document_count() == 2

    assert s.remove_document("S", "d1") is True
    assert s.remove_document("S", "d1") is False
    assert s.remove_document("missing", "d2") is False
    assert set(s.get_documents("S")) == {"d2"}

    assert s.delete_session("S") is True
    assert s.delete_session("S") is False
    assert s.get_documents("S") == {}
    assert s.get_documents(None) == {}


def test_returned_mapping_is_a_copy_sharing_documents():
    s = _store()
    doc = make_doc("d1", ["a"], [[1.0]])
    s.add_document("S", doc)
    view = s.get_documents("S")
    view.clear()
    assert s.get_documents("S")["d1"] is doc


def test_resolve_prefers_own_session():
    s = _store()
    s.add_document("S", make_doc("mine", ["a"], [[1.0]]))
    s.add_document("T", make_doc("theirs", ["b"], [[1.0]]))
    assert set(s.resolve_documents("S")) == {"mine"}


def test_resolve_consolidates_and_persists_under_session():
    s = _store()
    s.add_document("T1", make_doc("x", ["a"], [[1.0]]))
    s.add_document("T2", make_doc("y", ["b"], [[1.0]]))

    docs = s.resolve_documents("NEW")
    assert set(docs) == {"x", "y"}
    assert set(s.get_documents("NEW")) == {"x", "y"}
    # sources are left in place
    assert set(s.get_documents("T1")) == {"x"}


def test_resolve_without_session_id_does_not_store():
    s = _store()
    s.add_document("T1", make_doc("x", ["a"], [[1.0]]))
    assert set(s.resolve_documents(None)) == {"x"}
    assert sorted(s.session_ids()) == ["T1"]


def test_resolve_with_consolidation_disabled():
    s = _store()
    s.add_document("T1", make_doc("x", ["a"], [[1.0]]))
    assert s.resolve_documents("NEW", consolidate=False) == {}
    assert not s.has_session("NEW")


def test_resolve_on_empty_store():
    assert _store().resolve_documents("S") == {}


def test_concurrent_adds_are_not_lost():
    s = _store()

    def worker(n):
        for i in range(200):
            s.add_document(f"S{n % 3}", make_doc(f"{n}-{i}", ["t"], [[1.0]]))
            s.resolve_documents(f"R{n}")

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    total = sum(len(s.get_documents(f"S{k}")) for k in range(3))
    assert total == 8 * 200


def test_shutdown_clears_everything():
    s = _store()
    s.add_document("S", make_doc("d", ["a"], [[1.0]]))
    s.shutdown()
    assert len(s) == 0


def test_activity_tracker_idle_detection():
    clock = [1000.0]
    t = SessionActivityTracker(clock=lambda: clock[0])
    t.touch("old", at=100.0)
    t.touch("fresh")
    t.touch(None)
    assert len(t) == 2
    assert t.last_activity("fresh") == 1000.0
    assert t.idle_sessions(600) == ["old"]
    # strictly greater than the threshold
    assert t.idle_sessions(900) == []
    assert t.remove("old") is True
    assert t.remove("old") is False
    assert t.snapshot() == {"fresh": 1000.0}


def test_remove_if_idle_rechecks_last_activity():
    t = SessionActivityTracker(clock=lambda: 1000.0)
    dropped = []
    t.touch("S", at=100.0)
    assert t.idle_sessions(600) == ["S"]
    t.touch("S")
    assert t.remove_if_idle("S", 600, on_idle=dropped.append) is False
    assert t.last_activity("S") == 1000.0
    assert dropped == []

    t.touch("S", at=100.0)
    assert t.remove_if_idle("S", 600, on_idle=dropped.append) is True
    assert t.last_activity("S") is None
    assert dropped == ["S"]
    assert t.remove_if_idle("S", 600) is False
