"""
Tests for the invitation, password reset and user deletion flows in de.hejtalent.crm.accounts
"""

import pytest

from de.hejtalent.crm.accounts import (
    build_invite_url,
    delete_user,
    send_invitation,
    send_password_reset,
)
from sqlalchemy.exc import SQLAlchemyError

from de.hejtalent.crm.errors import (
    DatabaseError,
    IdentityProviderError,
    PermissionDeniedError,
    ValidationError,
)
from tests.test_helpers import (
    FakeHttpSession,
    FakeResponse,
    FakeSessionMaker,
    compiled_params,
    generate_user_id,
)


def test_invite_url_encodes_email():
    assert (
        build_invite_url("https://app.hejtalent.de/", "tok", "max+test@example.com")
        == "https://app.hejtalent.de/invite?token=tok&email=max%2Btest%40example.com"
    )


class TestSendInvitation:

    async def test_link_points_at_origin(self, settings, metrics_client):
        http_session = FakeHttpSession(FakeResponse(200, {"id": "m"}))

        invite_url = await send_invitation(
            settings,
            http_session,
            metrics_client,
            "new@example.com",
            "Muster GmbH",
            "tok",
            origin="https://preview.hejtalent.de",
        )

        assert invite_url == (
            "https://preview.hejtalent.de/invite?token=tok&email=new%40example.com"
        )
        sent = http_session.requests[0][2]["json"]
        assert sent["to"] == ["new@example.com"]
        assert sent["subject"] == "Einladung zu Muster GmbH bei HejTalent"
        assert "Muster GmbH" in sent["html"]

    async def test_link_falls_back_to_site_url(self, settings, metrics_client):
        settings.resend_api_key = None

        invite_url = await send_invitation(
            settings, FakeHttpSession(), metrics_client, "new@example.com", "Muster GmbH", "tok"
        )

        assert invite_url.startswith("https://hejtalent.de/invite?token=tok")


class TestSendPasswordReset:

    async def test_admin_sends_reset(self, settings, metrics_client):
        http_session = FakeHttpSession(
            FakeResponse(200, {"action_link": "http://auth.test/verify?token=abc"}),
            FakeResponse(200, {"id": "m"}),
        )

        message = await send_password_reset(
            settings,
            http_session,
            metrics_client,
            FakeSessionMaker(["admin"]),
            "admin-user",
            "user@example.com",
        )

        assert message == "Passwort-Reset Link wurde an user@example.com gesendet."
        assert http_session.urls() == [
            "http://auth.test/auth/v1/admin/generate_link",
            "http://mail.test/emails",
        ]
        assert http_session.requests[0][2]["json"]["redirect_to"] == (
            "https://hejtalent.de/reset-password"
        )
        assert "http://auth.test/verify?token=abc" in http_session.requests[1][2]["json"]["html"]

    async def test_non_admin_is_denied(self, settings, metrics_client):
        http_session = FakeHttpSession()

        with pytest.raises(PermissionDeniedError):
            await send_password_reset(
                settings,
                http_session,
                metrics_client,
                FakeSessionMaker(["company_admin", "user"]),
                "user-1",
                "user@example.com",
            )

        assert http_session.requests == []

    async def test_link_failure_sends_nothing(self, settings, metrics_client):
        http_session = FakeHttpSession(FakeResponse(404, {"msg": "User not found"}))

        with pytest.raises(IdentityProviderError):
            await send_password_reset(
                settings,
                http_session,
                metrics_client,
                FakeSessionMaker(["admin"]),
                "admin-user",
                "nobody@example.com",
            )

        assert len(http_session.requests) == 1


class FailingSecondSessionMaker(FakeSessionMaker):
    """Role lookup succeeds, the deletion transaction fails."""

    def __call__(self):
        database_session = super().__call__()
        if len(self.statements) > 0:
            database_session.fail_with = SQLAlchemyError("deadlock detected")
        return database_session


class TestDeleteUser:

    async def test_admin_deletes_user(self, settings):
        user_id = generate_user_id()
        http_session = FakeHttpSession(FakeResponse(204, text_body=""))
        session_maker = FakeSessionMaker(["admin"])

        message = await delete_user(
            settings, http_session, session_maker, generate_user_id(), user_id
        )

        assert message == "Benutzer erfolgreich gelöscht"
        assert [stmt.table.name for stmt in session_maker.statements[1:]] == [
            "user_roles",
            "profiles",
            "ms365_tokens",
            "ms365_subscriptions",
            "user_email_settings",
            "crm_contacts",
        ]
        assert compiled_params(session_maker.statements[-1])["user_id_1"] == user_id

        method, url, kwargs = http_session.requests[0]
        assert (method, url) == (
            "DELETE",
            f"http://auth.test/auth/v1/admin/users/{user_id}",
        )
        assert kwargs["headers"]["Authorization"] == "Bearer service-role-key"

    async def test_non_admin_is_denied(self, settings):
        session_maker = FakeSessionMaker(["company_admin"])

        with pytest.raises(PermissionDeniedError):
            await delete_user(
                settings, FakeHttpSession(), session_maker, "user-1", generate_user_id()
            )

        assert len(session_maker.statements) == 1

    @pytest.mark.parametrize(
        "user_id,message",
        [
            ("", "Benutzer-ID fehlt"),
            ("42", "Ungültige Benutzer-ID"),
        ],
    )
    async def test_invalid_user_id(self, settings, user_id, message):
        with pytest.raises(ValidationError, match=message):
            await delete_user(
                settings,
                FakeHttpSession(),
                FakeSessionMaker(["admin"]),
                generate_user_id(),
                user_id,
            )

    async def test_admin_cannot_delete_themselves(self, settings):
        admin_id = generate_user_id()
        session_maker = FakeSessionMaker(["admin"])

        with pytest.raises(ValidationError, match="nicht selbst"):
            await delete_user(
                settings, FakeHttpSession(), session_maker, admin_id, admin_id
            )

        assert len(session_maker.statements) == 1

    async def test_database_failure_keeps_auth_account(self, settings):
        http_session = FakeHttpSession()

        with pytest.raises(DatabaseError):
            await delete_user(
                settings,
                http_session,
                FailingSecondSessionMaker(["admin"]),
                generate_user_id(),
                generate_user_id(),
            )

        assert http_session.requests == []

    async def test_auth_api_failure(self, settings):
        http_session = FakeHttpSession(FakeResponse(500, {"msg": "database error"}))

        with pytest.raises(
            IdentityProviderError, match="Fehler beim Löschen des Auth-Benutzers"
        ):
            await delete_user(
                settings,
                http_session,
                FakeSessionMaker(["admin"]),
                generate_user_id(),
                generate_user_id(),
            )
