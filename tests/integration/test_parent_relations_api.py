# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Integration tests for Parent Relations API endpoints."""

from typing import Any
from urllib.parse import parse_qs, urlparse

from fastapi import FastAPI
from fastapi.testclient import TestClient

from campusid.infrastructure.database.repositories import RelationshipStore
from campusid.infrastructure.notifications import TemplateKind

API = "/api/v1"
PASSWORD = "correct-horse-1"


def _register(client: TestClient, email: str, role: str, **extra: Any) -> dict[str, Any]:
    response = client.post(
        f"{API}/auth/register",
        json={
            "email": email,
            "password": PASSWORD,
            "first_name": "Ada" if role == "student" else "Grace",
            "last_name": "Lovelace" if role == "student" else "Hopper",
            "role": role,
            **extra,
        },
    )
    assert response.status_code == 201, response.text
    return response.json()


def _auth(body: dict[str, Any]) -> dict[str, str]:
    return {"Authorization": f"Bearer {body['access_token']}"}


def _link_param(link: str, name: str) -> str:
    return parse_qs(urlparse(link).query)[name][0]


def _invite(client: TestClient, notifier: Any) -> tuple[dict[str, Any], str]:
    """Register a student naming an unknown parent and return the invitation id."""
    student = _register(client, "ada@example.com", "student", parent_email="grace@example.com")
    [notice] = notifier.sent
    assert notice.template_kind == TemplateKind.PARENT_INVITATION
    return student, _link_param(notice.context["link"], "invitationId")


class TestParentRelationsAPIRouting:
    """Tests for parent relations API routing."""

    def test_routes_registered(self, app: FastAPI) -> None:
        """Test that parent relation routes are registered."""
        routes = [route.path for route in app.routes]

        assert f"{API}/parent-relations/verify" in routes
        assert f"{API}/parent-relations/reject" in routes
        assert f"{API}/parent-relations/resend" in routes
        assert f"{API}/parent-relations/invitations/{{invitation_id}}" in routes
        assert f"{API}/parent-relations/invitations/{{invitation_id}}/register" in routes
        assert f"{API}/parent-relations/children" in routes
        assert f"{API}/parent-relations/pending" in routes


class TestInvitations:
    """Tests for the invitation branch."""

    def test_student_registration_sends_invitation(self, client: TestClient, notifier: Any) -> None:
        """Test that naming an unknown parent emails an invitation link."""
        _, invitation_id = _invite(client, notifier)

        [notice] = notifier.sent
        assert notice.to_email == "grace@example.com"
        assert notice.context["student_name"] == "Ada Lovelace"
        assert notice.context["link"].startswith("https://campus.example.com/parent-verification?")
        assert invitation_id

    def test_get_invitation(self, client: TestClient, notifier: Any) -> None:
        """Test that the invitation preview is public."""
        _, invitation_id = _invite(client, notifier)

        response = client.get(f"{API}/parent-relations/invitations/{invitation_id}")

        assert response.status_code == 200
        body = response.json()
        assert body["parent_email"] == "grace@example.com"
        assert body["student_name"] == "Ada Lovelace"
        assert body["status"] == "pending"
        assert body["is_expired"] is False

    def test_get_invitation_expired(self, client: TestClient, notifier: Any, clock: Any) -> None:
        """Test that the preview flags an invitation past its expiry."""
        _, invitation_id = _invite(client, notifier)
        clock.advance(days=8)

        response = client.get(f"{API}/parent-relations/invitations/{invitation_id}")

        assert response.status_code == 200
        assert response.json()["is_expired"] is True

    def test_get_unknown_invitation(self, client: TestClient) -> None:
        """Test that an unknown invitation is a 404."""
        response = client.get(f"{API}/parent-relations/invitations/does-not-exist")

        assert response.status_code == 404
        assert response.json()["error"] == "NOT_FOUND"

    def test_register_from_invitation(self, client: TestClient, notifier: Any) -> None:
        """Test that the invited parent is created and linked in one step."""
        student, invitation_id = _invite(client, notifier)

        response = client.post(
            f"{API}/parent-relations/invitations/{invitation_id}/register",
            json={"password": PASSWORD, "first_name": "Grace", "last_name": "Hopper"},
        )

        assert response.status_code == 201, response.text
        body = response.json()
        assert body["account"]["email"] == "grace@example.com"
        assert body["account"]["role"] == "parent"
        assert body["access_token"]
        assert body["relationship"]["student_id"] == student["account"]["id"]
        assert body["relationship"]["parent_id"] == body["account"]["id"]
        assert body["relationship"]["status"] == "verified"

        children = client.get(f"{API}/parent-relations/children", headers=_auth(body))
        assert children.status_code == 200
        [child] = children.json()
        assert child["student"]["id"] == student["account"]["id"]
        assert child["student"]["first_name"] == "Ada"

        preview = client.get(f"{API}/parent-relations/invitations/{invitation_id}")
        assert preview.json()["status"] == "verified"

    def test_register_from_used_invitation(self, client: TestClient, notifier: Any) -> None:
        """Test that an invitation cannot be used twice."""
        _, invitation_id = _invite(client, notifier)
        payload = {"password": PASSWORD, "first_name": "Grace", "last_name": "Hopper"}
        client.post(f"{API}/parent-relations/invitations/{invitation_id}/register", json=payload)

        response = client.post(
            f"{API}/parent-relations/invitations/{invitation_id}/register", json=payload
        )

        assert response.status_code == 400

    def test_register_from_expired_invitation(
        self, client: TestClient, notifier: Any, clock: Any
    ) -> None:
        """Test that an expired invitation cannot be redeemed."""
        _, invitation_id = _invite(client, notifier)
        clock.advance(days=8)

        response = client.post(
            f"{API}/parent-relations/invitations/{invitation_id}/register",
            json={"password": PASSWORD, "first_name": "Grace", "last_name": "Hopper"},
        )

        assert response.status_code == 400
        assert response.json()["message"] == "This invitation has expired."

    def test_verify_by_invitation_in_body(self, client: TestClient, notifier: Any) -> None:
        """Test that an invitation is verified from the request body."""
        _, invitation_id = _invite(client, notifier)

        response = client.post(
            f"{API}/parent-relations/verify", json={"invitation_id": invitation_id}
        )

        assert response.status_code == 200
        assert response.json()["invitation"]["status"] == "verified"


class TestExistingParent:
    """Tests for the existing-parent branch."""

    def test_link_request_verify_and_list(self, client: TestClient, notifier: Any) -> None:
        """Test that a pending link moves from pending to children once verified."""
        parent = _register(client, "grace@example.com", "parent")
        student = _register(client, "ada@example.com", "student", parent_email="Grace@Example.com")
        student_id = student["account"]["id"]

        [notice] = notifier.sent
        assert notice.template_kind == TemplateKind.PARENT_LINK_REQUEST
        assert _link_param(notice.context["link"], "studentId") == student_id

        pending = client.get(f"{API}/parent-relations/pending", headers=_auth(parent))
        assert pending.status_code == 200
        assert [child["student"]["id"] for child in pending.json()] == [student_id]
        assert client.get(f"{API}/parent-relations/children", headers=_auth(parent)).json() == []

        verified = client.post(
            f"{API}/parent-relations/verify",
            params={"studentId": student_id},
            headers=_auth(parent),
        )
        assert verified.status_code == 200, verified.text
        [relationship] = verified.json()["relationships"]
        assert relationship["status"] == "verified"
        assert relationship["parent_id"] == parent["account"]["id"]

        assert client.get(f"{API}/parent-relations/pending", headers=_auth(parent)).json() == []
        children = client.get(f"{API}/parent-relations/children", headers=_auth(parent)).json()
        assert [child["student"]["id"] for child in children] == [student_id]

    def test_verify_requires_one_identifier(self, client: TestClient) -> None:
        """Test that verification without an identifier is a 400."""
        response = client.post(f"{API}/parent-relations/verify")

        assert response.status_code == 400
        assert response.json()["error"] == "BAD_REQUEST"

    def test_verify_student_without_links(self, client: TestClient) -> None:
        """Test that verifying a student with no links is a 400."""
        student = _register(client, "ada@example.com", "student")

        response = client.post(
            f"{API}/parent-relations/verify", params={"studentId": student["account"]["id"]}
        )

        assert response.status_code == 400

    def test_teacher_email_as_parent_does_not_fail_registration(
        self, client: TestClient, notifier: Any
    ) -> None:
        """Test that a non-parent parent email is skipped, not fatal."""
        _register(client, "grace@example.com", "teacher")

        _register(client, "ada@example.com", "student", parent_email="grace@example.com")

        assert notifier.sent == []


class TestParentOnlyEndpoints:
    """Tests for role checks on the listing endpoints."""

    def test_children_requires_session(self, client: TestClient) -> None:
        """Test that listing children requires a session."""
        response = client.get(f"{API}/parent-relations/children")

        assert response.status_code == 401

    def test_children_requires_parent_role(self, client: TestClient) -> None:
        """Test that a student cannot list children."""
        student = _register(client, "ada@example.com", "student")

        response = client.get(f"{API}/parent-relations/children", headers=_auth(student))

        assert response.status_code == 403
        assert response.json()["error"] == "FORBIDDEN"

    def test_pending_requires_parent_role(self, client: TestClient) -> None:
        """Test that a teacher cannot list pending link requests."""
        teacher = _register(client, "alan@example.com", "teacher")

        response = client.get(f"{API}/parent-relations/pending", headers=_auth(teacher))

        assert response.status_code == 403


class TestDeclineAndResend:
    """Tests for declining links and re-sending their emails."""

    def test_decline_invitation(self, client: TestClient, notifier: Any) -> None:
        """Test that a declined invitation link stops working."""
        _, invitation_id = _invite(client, notifier)

        declined = client.post(
            f"{API}/parent-relations/reject", params={"invitationId": invitation_id}
        )
        assert declined.status_code == 200, declined.text
        assert declined.json()["invitation"]["status"] == "expired"

        preview = client.get(f"{API}/parent-relations/invitations/{invitation_id}")
        assert preview.json()["is_expired"] is True
        verify = client.post(
            f"{API}/parent-relations/verify", json={"invitation_id": invitation_id}
        )
        assert verify.status_code == 400

    def test_parent_declines_link_request(self, client: TestClient, notifier: Any) -> None:
        """Test that a parent can turn down a pending link request."""
        parent = _register(client, "grace@example.com", "parent")
        student = _register(client, "ada@example.com", "student", parent_email="grace@example.com")

        response = client.post(
            f"{API}/parent-relations/reject",
            json={"student_id": student["account"]["id"]},
            headers=_auth(parent),
        )

        assert response.status_code == 200, response.text
        assert len(response.json()["removed_relationship_ids"]) == 1
        assert client.get(f"{API}/parent-relations/pending", headers=_auth(parent)).json() == []

    def test_decline_by_student_requires_parent_session(
        self, client: TestClient, notifier: Any
    ) -> None:
        """Test that a student link cannot be declined anonymously or by the student."""
        _register(client, "grace@example.com", "parent")
        student = _register(client, "ada@example.com", "student", parent_email="grace@example.com")
        params = {"studentId": student["account"]["id"]}

        anonymous = client.post(f"{API}/parent-relations/reject", params=params)
        as_student = client.post(
            f"{API}/parent-relations/reject", params=params, headers=_auth(student)
        )

        assert anonymous.status_code == 401
        assert as_student.status_code == 403

    def test_student_resends_invitation(self, client: TestClient, notifier: Any) -> None:
        """Test that the student can resend a pending invitation email."""
        student, invitation_id = _invite(client, notifier)

        response = client.post(
            f"{API}/parent-relations/resend",
            json={"invitation_id": invitation_id},
            headers=_auth(student),
        )

        assert response.status_code == 200, response.text
        assert response.json()["invitation_id"] == invitation_id
        assert response.json()["notified"] is True
        first, resent = notifier.sent
        assert resent.to_email == "grace@example.com"
        assert resent.context["link"] == first.context["link"]

    def test_parent_resends_link_request(self, client: TestClient, notifier: Any) -> None:
        """Test that the parent of a pending relationship can resend its email."""
        parent = _register(client, "grace@example.com", "parent")
        _register(client, "ada@example.com", "student", parent_email="grace@example.com")
        [pending] = client.get(f"{API}/parent-relations/pending", headers=_auth(parent)).json()

        response = client.post(
            f"{API}/parent-relations/resend",
            json={"relationship_id": pending["relationship_id"]},
            headers=_auth(parent),
        )

        assert response.status_code == 200, response.text
        assert response.json()["relationship_id"] == pending["relationship_id"]
        assert [n.template_kind for n in notifier.sent] == [TemplateKind.PARENT_LINK_REQUEST] * 2

    def test_resend_requires_session(self, client: TestClient, notifier: Any) -> None:
        """Test that resending is not available anonymously."""
        _, invitation_id = _invite(client, notifier)

        response = client.post(
            f"{API}/parent-relations/resend", json={"invitation_id": invitation_id}
        )

        assert response.status_code == 401
        assert len(notifier.sent) == 1

    def test_resend_for_other_account_is_not_found(
        self, client: TestClient, notifier: Any
    ) -> None:
        """Test that an account outside the link cannot resend it."""
        _, invitation_id = _invite(client, notifier)
        other = _register(client, "alan@example.com", "student")

        response = client.post(
            f"{API}/parent-relations/resend",
            json={"invitation_id": invitation_id},
            headers=_auth(other),
        )

        assert response.status_code == 404


class TestRegistrationWithFailedLink:
    """Tests for student registration when the parent link cannot be stored."""

    def test_failed_link_write_still_registers(
        self, client: TestClient, notifier: Any, monkeypatch: Any
    ) -> None:
        """Test that a failed flush during linking leaves registration at 201."""

        async def failing_insert(store, row):
            row.student_id = None
            store.db.add(row)
            await store.db.flush()

        monkeypatch.setattr(RelationshipStore, "_insert", failing_insert)

        student = _register(client, "ada@example.com", "student", parent_email="grace@example.com")

        me = client.get(f"{API}/auth/me", headers=_auth(student))
        assert me.status_code == 200
        assert me.json()["email"] == "ada@example.com"
        assert notifier.sent == []
