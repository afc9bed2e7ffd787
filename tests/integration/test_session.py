"""Integration tests for transaction scope and storage error translation"""

from datetime import datetime, timezone

import pytest
from sqlalchemy import text

from trustlend.config import Settings
from trustlend.domain.exceptions import Conflict, StorageUnavailable
from trustlend.infrastructure.database.models import UserRow
from trustlend.infrastructure.database.session import build_engine, build_session_factory, session_scope

CREATED = datetime(2024, 1, 1, tzinfo=timezone.utc)


def user_row(user_id: str, wallet: str) -> UserRow:
    return UserRow(
        id=user_id,
        name="Row",
        wallet=wallet,
        role="BORROWER",
        score=50,
        status="ACTIVE",
        created_at=CREATED,
    )


def test_unique_violation_becomes_conflict(session_factory):
    with pytest.raises(Conflict):
        with session_scope(session_factory) as session:
            session.add(user_row("u-1", "0xabc"))
            session.add(user_row("u-2", "0xabc"))

    with session_scope(session_factory) as session:
        assert session.query(UserRow).count() == 0


def test_error_inside_scope_rolls_back(session_factory):
    with pytest.raises(ValueError):
        with session_scope(session_factory) as session:
            session.add(user_row("u-1", "0xabc"))
            session.flush()
            raise ValueError("abort")

    with session_scope(session_factory) as session:
        assert session.get(UserRow, "u-1") is None


def test_commit_on_success(session_factory):
    with session_scope(session_factory) as session:
        session.add(user_row("u-1", "0xabc"))

    with session_scope(session_factory) as session:
        assert session.get(UserRow, "u-1").wallet == "0xabc"


def test_unreachable_database_is_storage_unavailable(tmp_path):
    """Test driver failures surface as StorageUnavailable, with no internal retry"""
    config = Settings(database_url=f"sqlite:///{tmp_path / 'missing' / 'ledger.db'}", _env_file=None)
    engine = build_engine(config)
    try:
        with pytest.raises(StorageUnavailable):
            with session_scope(build_session_factory(engine)) as session:
                session.execute(text("SELECT 1"))
    finally:
        engine.dispose()
