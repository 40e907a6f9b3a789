"""Shared fixtures for pipeline tests."""

import pytest

from kindlesend.pipeline import PendingSession, InMemorySessionStore


@pytest.fixture
def store():
    return InMemorySessionStore()


@pytest.fixture
def pending(tmp_path, store):
    """Cache a staged file for a user and return the session"""
    def _pending(user_id=1, name="book.epub", content=b"data"):
        staging_dir = tmp_path / "staging" / str(user_id)
        staging_dir.mkdir(parents=True, exist_ok=True)
        path = staging_dir / name
        path.write_bytes(content)
        session = PendingSession(
            user_id=user_id,
            staged_file_path=str(path),
            original_file_path=str(path),
            display_file_name=name,
            staging_dir=str(staging_dir)
        )
        store.put(user_id, session)
        return session
    return _pending
