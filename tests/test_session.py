"""Tests for the pending session store."""

import threading

from kindlesend.pipeline import PendingSession, InMemorySessionStore, sweep_expired_sessions


def make_session(tmp_path, user_id=1, name="book.epub", created_at=1000.0, converted=False):
    staging_dir = tmp_path / str(user_id) / "upload"
    staging_dir.mkdir(parents=True)
    original = staging_dir / name
    original.write_bytes(b"data")
    staged = original
    if converted:
        staged = staging_dir / "book.epub"
        staged.write_bytes(b"converted")
    return PendingSession(
        user_id=user_id,
        staged_file_path=str(staged),
        original_file_path=str(original),
        display_file_name=name,
        staging_dir=str(staging_dir),
        created_at=created_at
    )


def test_take_and_clear_returns_session_once(tmp_path):
    store = InMemorySessionStore()
    session = make_session(tmp_path)
    assert store.put(1, session) is None

    assert store.get(1) == session
    assert store.take_and_clear(1) == session
    assert store.take_and_clear(1) is None
    assert store.get(1) is None


def test_put_returns_replaced_session(tmp_path):
    store = InMemorySessionStore()
    first = make_session(tmp_path / "a", name="first.epub")
    second = make_session(tmp_path / "b", name="second.epub")

    store.put(1, first)
    assert store.put(1, second) == first
    assert store.get(1) == second
    assert len(store) == 1


def test_sessions_are_per_user(tmp_path):
    store = InMemorySessionStore()
    store.put(1, make_session(tmp_path, user_id=1))
    store.put(2, make_session(tmp_path, user_id=2))

    assert store.take_and_clear(1).user_id == 1
    assert store.get(2).user_id == 2


def test_concurrent_take_and_clear_has_single_winner(tmp_path):
    store = InMemorySessionStore()
    store.put(1, make_session(tmp_path))
    barrier = threading.Barrier(8)
    results = []
    lock = threading.Lock()

    def take():
        barrier.wait()
        session = store.take_and_clear(1)
        with lock:
            results.append(session)

    threads = [threading.Thread(target=take) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len([s for s in results if s is not None]) == 1


def test_discard_removes_files_and_staging_dir(tmp_path):
    store = InMemorySessionStore()
    session = make_session(tmp_path, name="book.fb2", converted=True)

    store.discard(session)

    assert not (tmp_path / "1" / "upload").exists()
    assert not (tmp_path / "1").exists()


def test_discard_keeps_user_dir_with_other_uploads(tmp_path):
    store = InMemorySessionStore()
    session = make_session(tmp_path)
    other_upload = tmp_path / "1" / "other"
    other_upload.mkdir()

    store.discard(session)

    assert not (tmp_path / "1" / "upload").exists()
    assert other_upload.exists()


def test_discard_tolerates_missing_files(tmp_path):
    store = InMemorySessionStore()
    session = make_session(tmp_path)
    (tmp_path / "1" / "upload" / "book.epub").unlink()

    store.discard(session)

    assert not (tmp_path / "1" / "upload").exists()


def test_pop_expired_only_removes_old_sessions(tmp_path):
    store = InMemorySessionStore()
    store.put(1, make_session(tmp_path, user_id=1, created_at=1000.0))
    store.put(2, make_session(tmp_path, user_id=2, created_at=1900.0))

    expired = store.pop_expired(600, now=2000.0)

    assert [s.user_id for s in expired] == [1]
    assert store.get(1) is None
    assert store.get(2) is not None


def test_sweep_expired_sessions_deletes_files(tmp_path):
    store = InMemorySessionStore()
    session = make_session(tmp_path, created_at=0.0)
    store.put(1, session)

    assert sweep_expired_sessions(store, 60, now=1000.0) == 1
    assert not (tmp_path / "1" / "upload").exists()
    assert sweep_expired_sessions(store, 60, now=1000.0) == 0
