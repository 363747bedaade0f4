# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for the credential and relationship stores.

Runs against an in-memory SQLite database with the real schema, so the
unique and partial unique indexes are exercised.
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from campusid.core.errors import ConflictError
from campusid.infrastructure.database.models import (
    Account,
    InvitationStatus,
    RelationshipStatus,
)
from campusid.infrastructure.database.repositories import (
    CredentialStore,
    RelationshipStore,
    normalize_email,
)

START_TIME = datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc)


async def _create_account(
    db: AsyncSession,
    email: str,
    role: str = "student",
    first_name: str = "Jane",
) -> Account:
    return await CredentialStore(db).create(
        account_id=str(uuid4()),
        email=email,
        password_hash="$2b$04$hash",
        first_name=first_name,
        last_name="Doe",
        role=role,
    )


class TestNormalizeEmail:
    """Tests for email normalization."""

    def test_strips_and_lowercases(self) -> None:
        """Test that surrounding whitespace and case are removed."""
        assert normalize_email("  Jane.Doe@Example.COM ") == "jane.doe@example.com"


class TestCredentialStore:
    """Tests for CredentialStore."""

    @pytest.mark.asyncio
    async def test_create_and_read_back(self, db_session: AsyncSession) -> None:
        """Test that a created account can be read by id and by email."""
        store = CredentialStore(db_session)
        account = await _create_account(db_session, "Jane@Example.com")

        assert account.email == "jane@example.com"
        assert account.is_active is True
        assert account.is_verified is False
        assert (await store.get_by_id(account.id)).email == "jane@example.com"
        assert (await store.get_by_email("JANE@example.com")).id == account.id

    @pytest.mark.asyncio
    async def test_missing_account_returns_none(self, db_session: AsyncSession) -> None:
        """Test that lookups of unknown accounts return None."""
        store = CredentialStore(db_session)

        assert await store.get_by_id("missing") is None
        assert await store.get_by_email("nobody@example.com") is None

    @pytest.mark.asyncio
    async def test_duplicate_email_conflicts(self, db_session: AsyncSession) -> None:
        """Test that the email unique index rejects a second account."""
        await _create_account(db_session, "jane@example.com")

        with pytest.raises(ConflictError):
            await _create_account(db_session, "JANE@example.com")

    @pytest.mark.asyncio
    async def test_session_usable_after_conflict(self, db_session: AsyncSession) -> None:
        """Test that the session is rolled back and usable after a conflict."""
        await _create_account(db_session, "jane@example.com")
        with pytest.raises(ConflictError):
            await _create_account(db_session, "jane@example.com")

        other = await _create_account(db_session, "john@example.com")

        assert await CredentialStore(db_session).get_by_id(other.id) is not None

    @pytest.mark.asyncio
    async def test_mark_verified_transitions_once(self, db_session: AsyncSession) -> None:
        """Test that the verified flag flips exactly once."""
        store = CredentialStore(db_session)
        account = await _create_account(db_session, "jane@example.com")

        assert await store.mark_verified(account.id, START_TIME) is True
        assert await store.mark_verified(account.id, START_TIME) is False
        assert (await store.get_by_id(account.id)).is_verified is True

    @pytest.mark.asyncio
    async def test_mark_verified_unknown_account(self, db_session: AsyncSession) -> None:
        """Test that verifying an unknown account reports no transition."""
        assert await CredentialStore(db_session).mark_verified("missing") is False

    @pytest.mark.asyncio
    async def test_reset_marker_cleared_by_password_update(self, db_session: AsyncSession) -> None:
        """Test that replacing the hash clears a pending reset marker."""
        store = CredentialStore(db_session)
        account = await _create_account(db_session, "jane@example.com")

        await store.set_reset_marker(account, "marker", START_TIME + timedelta(hours=1))
        assert (await store.get_by_id(account.id)).reset_token == "marker"

        await store.update_password_hash(account, "$2b$04$new")
        reloaded = await store.get_by_id(account.id)

        assert reloaded.password_hash == "$2b$04$new"
        assert reloaded.reset_token is None
        assert reloaded.reset_token_expires_at is None

    @pytest.mark.asyncio
    async def test_touch_last_login(self, db_session: AsyncSession) -> None:
        """Test that the last login time is recorded."""
        store = CredentialStore(db_session)
        account = await _create_account(db_session, "jane@example.com")

        await store.touch_last_login(account, START_TIME)

        assert (await store.get_by_id(account.id)).last_login_at is not None

    @pytest.mark.asyncio
    async def test_failed_logins_lock_at_the_limit(self, db_session: AsyncSession) -> None:
        """Test that the limit-th failure sets the lock and restarts the counter."""
        store = CredentialStore(db_session)
        account = await _create_account(db_session, "jane@example.com")

        locks = [
            await store.record_failed_login(account, START_TIME, 3, timedelta(minutes=15))
            for _ in range(3)
        ]

        assert locks == [False, False, True]
        reloaded = await store.get_by_id(account.id)
        assert reloaded.failed_login_attempts == 0
        assert reloaded.locked_until.replace(tzinfo=None) == (
            START_TIME + timedelta(minutes=15)
        ).replace(tzinfo=None)

    @pytest.mark.asyncio
    async def test_successful_login_clears_failures(self, db_session: AsyncSession) -> None:
        """Test that a recorded login clears the counter and any lock."""
        store = CredentialStore(db_session)
        account = await _create_account(db_session, "jane@example.com")
        await store.record_failed_login(account, START_TIME, 1, timedelta(minutes=15))
        await store.record_failed_login(account, START_TIME, 5, timedelta(minutes=15))

        await store.touch_last_login(account, START_TIME + timedelta(minutes=20))

        reloaded = await store.get_by_id(account.id)
        assert reloaded.failed_login_attempts == 0
        assert reloaded.locked_until is None


class TestRelationshipStore:
    """Tests for RelationshipStore."""

    @pytest.mark.asyncio
    async def test_second_pending_relationship_for_pair_conflicts(
        self, db_session: AsyncSession
    ) -> None:
        """Test that at most one pending relationship exists per pair."""
        store = RelationshipStore(db_session)
        parent = await _create_account(db_session, "parent@example.com", role="parent")
        student = await _create_account(db_session, "student@example.com")

        await store.create_relationship(parent.id, student.id, created_at=START_TIME)

        with pytest.raises(ConflictError):
            await store.create_relationship(parent.id, student.id, created_at=START_TIME)

    @pytest.mark.asyncio
    async def test_verified_relationship_does_not_block_pending(
        self, db_session: AsyncSession
    ) -> None:
        """Test that the uniqueness rule only covers pending rows."""
        store = RelationshipStore(db_session)
        parent = await _create_account(db_session, "parent@example.com", role="parent")
        student = await _create_account(db_session, "student@example.com")

        await store.create_relationship(
            parent.id,
            student.id,
            status=RelationshipStatus.VERIFIED,
            created_at=START_TIME,
            verified_at=START_TIME,
        )
        pending = await store.create_relationship(parent.id, student.id, created_at=START_TIME)

        assert pending.status == "pending"
        assert (await store.get_pending_relationship(parent.id, student.id)).id == pending.id

    @pytest.mark.asyncio
    async def test_mark_relationships_verified_keeps_first_timestamp(
        self, db_session: AsyncSession
    ) -> None:
        """Test that already verified rows keep their verification time."""
        store = RelationshipStore(db_session)
        parent = await _create_account(db_session, "parent@example.com", role="parent")
        student = await _create_account(db_session, "student@example.com")
        relationship = await store.create_relationship(parent.id, student.id, created_at=START_TIME)

        first = START_TIME + timedelta(minutes=5)
        await store.mark_relationships_verified([relationship], first)
        await store.mark_relationships_verified([relationship], first + timedelta(days=1))

        [reloaded] = await store.list_for_student(student.id)
        assert reloaded.status == "verified"
        assert reloaded.verified_at.replace(tzinfo=None) == first.replace(tzinfo=None)

    @pytest.mark.asyncio
    async def test_list_for_parent_joins_student(self, db_session: AsyncSession) -> None:
        """Test that a parent's relationships come back with the student row."""
        store = RelationshipStore(db_session)
        parent = await _create_account(db_session, "parent@example.com", role="parent")
        student = await _create_account(db_session, "student@example.com", first_name="Ada")
        other = await _create_account(db_session, "other@example.com")
        await store.create_relationship(parent.id, student.id, created_at=START_TIME)
        await store.create_relationship(
            parent.id,
            other.id,
            status=RelationshipStatus.VERIFIED,
            created_at=START_TIME,
            verified_at=START_TIME,
        )

        pending = await store.list_for_parent(parent.id, RelationshipStatus.PENDING)
        verified = await store.list_for_parent(parent.id, RelationshipStatus.VERIFIED)

        assert [(r.student_id, s.first_name) for r, s in pending] == [(student.id, "Ada")]
        assert [s.id for _, s in verified] == [other.id]

    @pytest.mark.asyncio
    async def test_list_for_student_scoped_to_parent(self, db_session: AsyncSession) -> None:
        """Test that a student's relationships can be narrowed to one parent."""
        store = RelationshipStore(db_session)
        mother = await _create_account(db_session, "mother@example.com", role="parent")
        father = await _create_account(db_session, "father@example.com", role="parent")
        student = await _create_account(db_session, "student@example.com")
        await store.create_relationship(mother.id, student.id, created_at=START_TIME)
        await store.create_relationship(father.id, student.id, created_at=START_TIME)

        assert len(await store.list_for_student(student.id)) == 2
        [only] = await store.list_for_student(student.id, parent_id=father.id)
        assert only.parent_id == father.id

    @pytest.mark.asyncio
    async def test_second_pending_invitation_for_pair_conflicts(
        self, db_session: AsyncSession
    ) -> None:
        """Test that at most one pending invitation exists per email and student."""
        store = RelationshipStore(db_session)
        student = await _create_account(db_session, "student@example.com")
        expires = START_TIME + timedelta(days=7)

        await store.create_invitation("inv-1", "Parent@Example.com", student.id, expires, START_TIME)

        with pytest.raises(ConflictError):
            await store.create_invitation("inv-2", "parent@example.com", student.id, expires, START_TIME)

    @pytest.mark.asyncio
    async def test_expired_invitation_frees_the_pair(self, db_session: AsyncSession) -> None:
        """Test that a non-pending invitation no longer blocks a new one."""
        store = RelationshipStore(db_session)
        student = await _create_account(db_session, "student@example.com")
        expires = START_TIME + timedelta(days=7)
        first = await store.create_invitation("inv-1", "parent@example.com", student.id, expires, START_TIME)

        await store.set_invitation_status(first, InvitationStatus.EXPIRED)
        await store.create_invitation("inv-2", "parent@example.com", student.id, expires, START_TIME)

        pending = await store.get_pending_invitation("PARENT@example.com", student.id)
        assert pending.id == "inv-2"
        assert (await store.get_invitation("inv-1")).status == "expired"

    @pytest.mark.asyncio
    async def test_set_invitation_status_records_verification_time(
        self, db_session: AsyncSession
    ) -> None:
        """Test that verifying an invitation stores when it happened."""
        store = RelationshipStore(db_session)
        student = await _create_account(db_session, "student@example.com")
        invitation = await store.create_invitation(
            "inv-1", "parent@example.com", student.id, START_TIME + timedelta(days=7), START_TIME
        )

        await store.set_invitation_status(invitation, InvitationStatus.VERIFIED, verified_at=START_TIME)

        reloaded = await store.get_invitation("inv-1")
        assert reloaded.status == "verified"
        assert reloaded.verified_at is not None

    @pytest.mark.asyncio
    async def test_delete_relationships_frees_the_pair(self, db_session: AsyncSession) -> None:
        """Test that a removed pending relationship can be created again."""
        store = RelationshipStore(db_session)
        parent = await _create_account(db_session, "parent@example.com", role="parent")
        student = await _create_account(db_session, "student@example.com")
        first = await store.create_relationship(parent.id, student.id, created_at=START_TIME)
        first_id = first.id

        await store.delete_relationships([first])

        assert await store.get_relationship(first_id) is None
        second = await store.create_relationship(parent.id, student.id, created_at=START_TIME)
        assert (await store.get_relationship(second.id)).status == RelationshipStatus.PENDING.value
