"""
Tests for the column types declared in de.hejtalent.crm.model.base

These only inspect the mapped tables, so no database is needed.
"""

from sqlalchemy import String, Text, Uuid

from de.hejtalent.crm.model.accounts import UserEmailSettings, UserRole
from de.hejtalent.crm.model.base import generate_guid, is_uuid
from de.hejtalent.crm.model.crm import CrmContact, CrmContactResearch
from de.hejtalent.crm.model.ms365 import Ms365Subscription, Ms365Token
from de.hejtalent.crm.model.outreach import OutreachEmailSequence


class TestColumnTypes:

    def test_token_columns(self):
        columns = Ms365Token.__table__.c

        assert isinstance(columns.id.type, Uuid)
        assert columns.id.primary_key
        assert isinstance(columns.user_id.type, Uuid)
        assert not columns.user_id.nullable
        assert isinstance(columns.email_address.type, String)
        assert columns.email_address.type.length == 512
        assert isinstance(columns.access_token.type, Text)
        assert isinstance(columns.refresh_token.type, Text)
        assert not columns.refresh_token.nullable

    def test_subscription_columns(self):
        columns = Ms365Subscription.__table__.c

        assert isinstance(columns.user_id.type, Uuid)
        assert columns.subscription_id.type.length == 512

    def test_crm_columns(self):
        research = CrmContactResearch.__table__.c

        assert isinstance(research.contact_id.type, Uuid)
        assert research.contact_id.unique
        assert CrmContact.__table__.c.email.nullable
        assert isinstance(UserRole.__table__.c.user_id.type, Uuid)

    def test_outreach_columns(self):
        columns = OutreachEmailSequence.__table__.c

        assert isinstance(columns.campaign_id.type, Uuid)
        assert [fk.target_fullname for fk in columns.campaign_id.foreign_keys] == [
            "outreach_campaigns.id"
        ]
        assert isinstance(columns.body_template.type, Text)
        assert UserEmailSettings.__table__.c.email_signature.nullable

    def test_uuid_columns_keep_strings(self):
        assert Ms365Token.__table__.c.user_id.type.as_uuid is False


class TestGenerateGuid:

    def test_guids_are_uuid_strings(self):
        guid = generate_guid()

        assert len(guid) == 36
        assert guid.count("-") == 4
        assert generate_guid() != guid
        assert is_uuid(guid)


class TestIsUuid:

    def test_is_uuid(self):
        assert is_uuid("7f105c7d-2dc5-4530-97cd-4e7ae6534c07")
        assert not is_uuid("u")
        assert not is_uuid("")
        assert not is_uuid("42")
