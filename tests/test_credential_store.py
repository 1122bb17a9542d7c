# tests/test_credential_store.py
"""Tests for linked accounts (platform account <-> local user)."""

from unittest.mock import MagicMock

import pytest
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, OperationalError

from marathon.helpers.credential_store import (
    ClientMembership,
    LinkedAccount,
    User,
    create_linked_account,
    get_linked_account,
    get_tokens,
    list_linked_accounts,
    list_platform_names,
    lookup_user_by_platform_account,
    replace_connection_string,
)
from marathon.helpers.store_errors import (
    ConnectionStringError,
    LinkedAccountConflictError,
    LinkedAccountNotFoundError,
    MalformedDataError,
    NotFoundError,
    StoreIntegrityError,
)

CONN_STR = "oauth2;AC3$$T0K3N;R3FR3$HT0K3N"


def _count(db, model):
    return db.query(func.count(model.id)).scalar()


class TestLinkedAccountModel:
    def test_table_name(self):
        assert LinkedAccount.__tablename__ == "credentials"

    def test_model_fields(self):
        columns = {c.name for c in LinkedAccount.__table__.columns}
        assert {
            "id",
            "user_id",
            "platform_name",
            "platform_user_id",
            "connection_string",
        } <= columns

    def test_unique_constraint(self):
        """Each (platform_name, platform_user_id) pair must be unique."""
        constraints = LinkedAccount.__table__.constraints
        unique_found = any(
            hasattr(c, "columns")
            and {col.name for col in c.columns} == {"platform_name", "platform_user_id"}
            for c in constraints
        )
        assert unique_found

    def test_membership_references_user_and_client(self):
        targets = {
            fk.target_fullname for fk in ClientMembership.__table__.foreign_keys
        }
        assert targets == {"users.id", "clients.id"}


class TestCreateLinkedAccount:
    def test_returns_new_user_id(self, db):
        user_id = create_linked_account(db, 1, "fitbit", "A1B2C3", CONN_STR)

        assert user_id > 0
        assert lookup_user_by_platform_account(db, "fitbit", "A1B2C3") == user_id

    def test_creates_all_three_rows(self, db):
        user_id = create_linked_account(db, 1, "fitbit", "A1B2C3", CONN_STR)

        assert db.get(User, user_id) is not None
        membership = db.query(ClientMembership).filter_by(user_id=user_id).one()
        assert membership.client_id == 1
        account = get_linked_account(db, user_id, "fitbit")
        assert account.connection_string == CONN_STR

    def test_each_link_gets_a_fresh_user(self, db):
        first = create_linked_account(db, 1, "fitbit", "A1B2C3", CONN_STR)
        second = create_linked_account(db, 2, "fitbit", "Z9Y8X7", CONN_STR)

        assert first != second
        assert _count(db, User) == 2

    def test_duplicate_platform_account_conflicts(self, db):
        create_linked_account(db, 1, "fitbit", "A1B2C3", CONN_STR)

        with pytest.raises(LinkedAccountConflictError) as exc_info:
            create_linked_account(db, 2, "fitbit", "A1B2C3", CONN_STR)

        assert exc_info.value.platform_user_id == "A1B2C3"
        assert isinstance(exc_info.value.__cause__, IntegrityError)
        assert _count(db, User) == 1
        assert _count(db, LinkedAccount) == 1
        assert _count(db, ClientMembership) == 1

    def test_same_platform_id_on_other_platform_is_allowed(self, db):
        create_linked_account(db, 1, "fitbit", "A1B2C3", CONN_STR)
        create_linked_account(db, 1, "garmin", "A1B2C3", CONN_STR)

        assert _count(db, LinkedAccount) == 2

    def test_failed_membership_insert_leaves_nothing(self, db):
        """An unknown client fails the last insert and rolls back the first two."""
        with pytest.raises(StoreIntegrityError):
            create_linked_account(db, 999, "fitbit", "A1B2C3", CONN_STR)

        assert _count(db, User) == 0
        assert _count(db, LinkedAccount) == 0
        assert _count(db, ClientMembership) == 0
        assert lookup_user_by_platform_account(db, "fitbit", "A1B2C3") is None

    def test_session_usable_after_rollback(self, db):
        with pytest.raises(StoreIntegrityError):
            create_linked_account(db, 999, "fitbit", "A1B2C3", CONN_STR)

        user_id = create_linked_account(db, 1, "fitbit", "A1B2C3", CONN_STR)
        assert lookup_user_by_platform_account(db, "fitbit", "A1B2C3") == user_id

    def test_empty_connection_string_rejected_before_storage(self):
        db = MagicMock()

        with pytest.raises(ConnectionStringError):
            create_linked_account(db, 1, "fitbit", "A1B2C3", "")

        db.add.assert_not_called()
        db.flush.assert_not_called()


class TestCreateLinkedAccountTransaction:
    def _get_mock_session(self):
        return MagicMock()

    def test_commits_once_after_three_inserts(self):
        db = self._get_mock_session()

        create_linked_account(db, 1, "fitbit", "A1B2C3", CONN_STR)

        assert db.add.call_count == 3
        assert db.flush.call_count == 3
        db.commit.assert_called_once()
        db.rollback.assert_not_called()

    def test_inserts_in_order(self):
        db = self._get_mock_session()

        create_linked_account(db, 1, "fitbit", "A1B2C3", CONN_STR)

        added = [call.args[0] for call in db.add.call_args_list]
        assert isinstance(added[0], User)
        assert isinstance(added[1], LinkedAccount)
        assert isinstance(added[2], ClientMembership)
        assert added[1].platform_name == "fitbit"
        assert added[1].platform_user_id == "A1B2C3"
        assert added[2].client_id == 1

    def test_failure_on_membership_insert_rolls_back(self):
        db = self._get_mock_session()
        db.flush.side_effect = [
            None,
            None,
            IntegrityError(
                "INSERT", {}, Exception("FOREIGN KEY constraint failed")
            ),
        ]

        with pytest.raises(StoreIntegrityError):
            create_linked_account(db, 1, "fitbit", "A1B2C3", CONN_STR)

        db.rollback.assert_called_once()
        db.commit.assert_not_called()

    def test_failure_on_first_insert_stops_sequence(self):
        db = self._get_mock_session()
        db.flush.side_effect = OperationalError("INSERT", {}, Exception("timeout"))

        with pytest.raises(OperationalError):
            create_linked_account(db, 1, "fitbit", "A1B2C3", CONN_STR)

        assert db.add.call_count == 1
        db.rollback.assert_called_once()
        db.commit.assert_not_called()

    def test_non_database_error_rolls_back(self):
        db = self._get_mock_session()
        db.flush.side_effect = [None, RuntimeError("interrupted")]

        with pytest.raises(RuntimeError):
            create_linked_account(db, 1, "fitbit", "A1B2C3", CONN_STR)

        db.rollback.assert_called_once()
        db.commit.assert_not_called()

    def test_postgres_unique_violation_is_conflict(self):
        orig = Exception("duplicate key value violates unique constraint")
        orig.pgcode = "23505"
        db = self._get_mock_session()
        db.flush.side_effect = [None, IntegrityError("INSERT", {}, orig)]

        with pytest.raises(LinkedAccountConflictError):
            create_linked_account(db, 1, "fitbit", "A1B2C3", CONN_STR)

        db.rollback.assert_called_once()

    def test_postgres_foreign_key_violation_is_not_conflict(self):
        orig = Exception("violates foreign key constraint")
        orig.pgcode = "23503"
        db = self._get_mock_session()
        db.flush.side_effect = [None, None, IntegrityError("INSERT", {}, orig)]

        with pytest.raises(StoreIntegrityError):
            create_linked_account(db, 1, "fitbit", "A1B2C3", CONN_STR)


class TestLookupUserByPlatformAccount:
    def test_unlinked_account_returns_none(self, db):
        assert lookup_user_by_platform_account(db, "fitbit", "UNKNOWN") is None

    def test_matches_both_platform_and_id(self, db):
        user_id = create_linked_account(db, 1, "fitbit", "A1B2C3", CONN_STR)

        assert lookup_user_by_platform_account(db, "fitbit", "A1B2C3") == user_id
        assert lookup_user_by_platform_account(db, "garmin", "A1B2C3") is None

    def test_untrusted_input_is_bound_not_interpolated(self, db):
        create_linked_account(db, 1, "fitbit", "A1B2C3", CONN_STR)

        assert lookup_user_by_platform_account(db, "fitbit", "' OR '1'='1") is None

    def test_infrastructure_failure_raises(self):
        db = MagicMock()
        db.query.return_value.filter.return_value.first.side_effect = (
            OperationalError("SELECT", {}, Exception("connection lost"))
        )

        with pytest.raises(OperationalError):
            lookup_user_by_platform_account(db, "fitbit", "A1B2C3")


class TestGetTokens:
    def test_splits_connection_string(self, db):
        user_id = create_linked_account(db, 1, "fitbit", "A1B2C3", CONN_STR)

        access, refresh = get_tokens(db, user_id, "fitbit")

        assert access == "AC3$$T0K3N"
        assert refresh == "R3FR3$HT0K3N"

    def test_from_mock_row(self):
        db = MagicMock()
        row = MagicMock()
        row.connection_string = CONN_STR
        db.query.return_value.filter.return_value.first.return_value = row

        assert get_tokens(db, 1, "fitbit") == ("AC3$$T0K3N", "R3FR3$HT0K3N")

    def test_missing_link_raises_not_found(self, db):
        user_id = create_linked_account(db, 1, "fitbit", "A1B2C3", CONN_STR)

        with pytest.raises(LinkedAccountNotFoundError) as exc_info:
            get_tokens(db, user_id, "garmin")

        assert isinstance(exc_info.value, NotFoundError)
        assert exc_info.value.platform_name == "garmin"

    def test_malformed_connection_string(self, db):
        user_id = create_linked_account(db, 1, "fitbit", "A1B2C3", "oauth2;only-one")

        with pytest.raises(MalformedDataError):
            get_tokens(db, user_id, "fitbit")


class TestListPlatformNames:
    def test_returns_every_linked_platform(self, db):
        platforms = ["fitbit", "garmin", "google-fit", "map-my-tracks"]
        user_id = create_linked_account(db, 1, platforms[0], "P0", CONN_STR)
        for i, name in enumerate(platforms[1:], start=1):
            db.add(
                LinkedAccount(
                    user_id=user_id,
                    platform_name=name,
                    platform_user_id=f"P{i}",
                    connection_string=CONN_STR,
                )
            )
        db.commit()

        assert set(list_platform_names(db, user_id)) == set(platforms)
        assert len(list_platform_names(db, user_id)) == 4

    def test_user_without_links_gets_empty_list(self, db):
        assert list_platform_names(db, 42) == []

    def test_only_lists_own_platforms(self, db):
        mine = create_linked_account(db, 1, "fitbit", "A", CONN_STR)
        create_linked_account(db, 1, "garmin", "B", CONN_STR)

        assert list_platform_names(db, mine) == ["fitbit"]
        assert len(list_linked_accounts(db, mine)) == 1


class TestReplaceConnectionString:
    def test_overwrites_tokens(self, db):
        user_id = create_linked_account(db, 1, "fitbit", "A1B2C3", CONN_STR)

        rows = replace_connection_string(
            db, user_id, "fitbit", "oauth2;NEW-ACCESS;NEW-REFRESH"
        )

        assert rows == 1
        assert get_tokens(db, user_id, "fitbit") == ("NEW-ACCESS", "NEW-REFRESH")
        assert get_linked_account(db, user_id, "fitbit").updated_at is not None

    def test_missing_link_affects_zero_rows(self, db):
        assert replace_connection_string(db, 7, "fitbit", CONN_STR) == 0

    def test_empty_connection_string_rejected(self, db):
        with pytest.raises(ConnectionStringError):
            replace_connection_string(db, 1, "fitbit", "")
