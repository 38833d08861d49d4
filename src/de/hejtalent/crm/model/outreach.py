"""Outreach campaign data models.

A campaign owns an ordered series of e-mail templates. Campaigns are authored
in the CRM frontend; this service only reads them to send test mails.
"""
from typing import Optional
from sqlalchemy import ForeignKey, Integer
from sqlalchemy.orm import Mapped, mapped_column

from de.hejtalent.crm.model.base import Base, longtext, str512, uuidpk, uuidstr


class OutreachCampaign(Base):
    __tablename__ = "outreach_campaigns"

    id: Mapped[uuidpk]
    name: Mapped[Optional[str512]]
    created_by: Mapped[uuidstr]


class OutreachEmailSequence(Base):
    """One e-mail of a campaign; sent in ``sequence_number`` order."""
    __tablename__ = "outreach_email_sequences"

    id: Mapped[uuidpk]
    campaign_id: Mapped[uuidstr] = mapped_column(
        ForeignKey("outreach_campaigns.id", ondelete="CASCADE")
    )
    sequence_number: Mapped[int] = mapped_column(Integer, nullable=False)
    subject_template: Mapped[longtext]
    body_template: Mapped[longtext]
