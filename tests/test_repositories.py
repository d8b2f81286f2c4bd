from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from sqlalchemy import Delete, create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.db.base import Base
from app.db.repositories import DeviceTokenRepository, QuotationRepository
from app.notification.dispatcher import EndpointLookupError, NotificationDispatcher, PerTokenOutcome


@pytest.fixture()
def db_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    session_factory = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    with session_factory() as db:
        yield db


def test_quotation_repository_create_get_and_list_newest_first(db_session):
    repo = QuotationRepository(db_session)
    older = repo.create(
        owner_id="owner-1",
        name="Shop",
        quotation_text="# Old",
        created_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
    )
    newer = repo.create(
        owner_id="owner-1",
        name="Blog",
        quotation_text="# New",
        created_at=datetime(2026, 2, 1, tzinfo=timezone.utc),
    )
    repo.create(owner_id="owner-2", name="Other", quotation_text="# Other")

    assert repo.get(older.id).quotation_text == "# Old"
    assert [q.id for q in repo.list_by_owner("owner-1")] == [newer.id, older.id]
    assert repo.list_by_owner("nobody") == []


def test_quotation_repository_get_by_name_is_scoped_to_owner(db_session):
    repo = QuotationRepository(db_session)
    mine = repo.create(owner_id="owner-1", name="Shop", quotation_text="mine")
    repo.create(owner_id="owner-2", name="Shop", quotation_text="theirs")

    assert repo.get_by_name("owner-1", "Shop").id == mine.id
    assert repo.get_by_name("owner-1", "Missing") is None


def test_device_token_save_then_list(db_session):
    repo = DeviceTokenRepository(db_session)
    repo.save_token("owner-1", "token-aaaaaaaaaaaa", "android")
    repo.save_token("owner-1", "token-bbbbbbbbbbbb", "ios")

    assert sorted(repo.list_by_owner("owner-1")) == ["token-aaaaaaaaaaaa", "token-bbbbbbbbbbbb"]
    assert repo.get_by_token("token-aaaaaaaaaaaa").device_type == "android"


def test_device_token_upsert_moves_token_to_new_owner(db_session):
    repo = DeviceTokenRepository(db_session)
    first = repo.save_token("owner-1", "shared-token-0001", "android")
    second = repo.save_token("owner-2", "shared-token-0001", "ios")

    assert first.id == second.id
    assert repo.list_by_owner("owner-1") == []
    assert repo.list_by_owner("owner-2") == ["shared-token-0001"]
    assert repo.get_by_token("shared-token-0001").device_type == "ios"


def test_device_token_resave_same_owner_keeps_single_row(db_session):
    repo = DeviceTokenRepository(db_session)
    repo.save_token("owner-1", "token-cccccccccccc")
    repo.save_token("owner-1", "token-cccccccccccc")

    assert repo.list_by_owner("owner-1") == ["token-cccccccccccc"]


def test_device_token_delete_is_idempotent(db_session):
    repo = DeviceTokenRepository(db_session)
    repo.save_token("owner-1", "token-dddddddddddd")

    assert repo.delete_token("token-dddddddddddd") is True
    assert repo.delete_token("token-dddddddddddd") is False
    assert repo.list_by_owner("owner-1") == []


def test_device_token_lookup_failure_raises_endpoint_lookup_error():
    db = MagicMock()
    db.execute.side_effect = OperationalError("SELECT", {}, Exception("connection lost"))

    with pytest.raises(EndpointLookupError):
        DeviceTokenRepository(db).list_by_owner("owner-1")


def test_failed_token_delete_does_not_block_later_deletes(db_session):
    repo = DeviceTokenRepository(db_session)
    repo.save_token("owner-1", "token-stuck-aaaaaaaa")
    repo.save_token("owner-1", "token-stale-bbbbbbbb")
    db_session.commit()

    real_execute = db_session.execute
    failed = []

    def flaky_execute(statement, *args, **kwargs):
        if isinstance(statement, Delete) and "token-stuck-aaaaaaaa" in statement.compile().params.values():
            failed.append(statement)
            raise OperationalError("DELETE", {}, Exception("lock timeout"))
        return real_execute(statement, *args, **kwargs)

    db_session.execute = flaky_execute
    sender = MagicMock()
    sender.send.return_value = [
        PerTokenOutcome(success=False, error_code="registration-token-not-registered"),
        PerTokenOutcome(success=False, error_code="invalid-registration-token"),
    ]

    result = NotificationDispatcher(repo, sender).notify("owner-1", "Title", "Body", {})
    db_session.commit()
    del db_session.execute

    assert len(failed) == 1
    assert result.all_delivered is False
    assert repo.list_by_owner("owner-1") == ["token-stuck-aaaaaaaa"]
