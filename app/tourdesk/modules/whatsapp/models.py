from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.tourdesk.models import Base

MESSAGE_DIRECTIONS = ("inbound", "outbound")
CAMPAIGN_STATUSES = ("draft", "scheduled", "sending", "paused", "completed", "failed", "cancelled")
RECIPIENT_STATUSES = ("pending", "sent", "delivered", "read", "failed", "retry", "opted_out", "responded")
SYNC_STATUSES = ("pending", "in_progress", "synced", "failed")


class WhatsAppMessage(Base):
    __tablename__ = "whatsapp_messages"
    __table_args__ = (
        Index("idx_whatsapp_messages_wamid", "message_id"),
        Index("idx_whatsapp_messages_from", "from_address"),
        Index("idx_whatsapp_messages_to", "to_address"),
        Index("idx_whatsapp_messages_created_at", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    message_id: Mapped[str | None] = mapped_column(String(128), nullable=True)  # Meta wamid
    from_address: Mapped[str | None] = mapped_column(String(64), nullable=True)  # "whatsapp:+91..."
    to_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    body: Mapped[str | None] = mapped_column(Text, nullable=True)
    direction: Mapped[str] = mapped_column(String(16), nullable=False, default="outbound")
    status: Mapped[str | None] = mapped_column(String(32), nullable=True)  # sent|delivered|read|failed|received
    # "metadata" is reserved on declarative classes
    meta: Mapped[dict] = mapped_column("metadata", JSON, nullable=False, default=dict)
    error_code: Mapped[str | None] = mapped_column(String(32), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    customer_id: Mapped[int | None] = mapped_column(ForeignKey("whatsapp_customers.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    customer: Mapped["WhatsAppCustomer"] = relationship(lazy="joined")


class WhatsAppCustomer(Base):
    __tablename__ = "whatsapp_customers"
    __table_args__ = (
        UniqueConstraint("phone_number", name="uq_whatsapp_customers_phone"),
        Index("idx_whatsapp_customers_created_at", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    first_name: Mapped[str] = mapped_column(String(128), nullable=False)
    last_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    phone_number: Mapped[str] = mapped_column(String(32), nullable=False)  # E.164
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    tags: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_opted_in: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    imported_from: Mapped[str | None] = mapped_column(String(128), nullable=True)
    imported_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    last_contacted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p).strip()


class WhatsAppCampaign(Base):
    __tablename__ = "whatsapp_campaigns"
    __table_args__ = (Index("idx_whatsapp_campaigns_status", "status"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    template_name: Mapped[str] = mapped_column(String(255), nullable=False)
    template_language: Mapped[str] = mapped_column(String(16), nullable=False, default="en_US")
    template_variables: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)  # {"1": "...", "2": "..."}
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="draft")
    scheduled_for: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    rate_limit: Mapped[int] = mapped_column(Integer, nullable=False, default=10)  # messages per minute
    send_window_start: Mapped[int | None] = mapped_column(Integer, nullable=True)  # hour 0-23
    send_window_end: Mapped[int | None] = mapped_column(Integer, nullable=True)
    total_recipients: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sent_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    delivered_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    read_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    responded_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    recipients: Mapped[list["WhatsAppCampaignRecipient"]] = relationship(
        back_populates="campaign",
        cascade="all, delete-orphan",
        lazy="select",
        order_by="WhatsAppCampaignRecipient.id",
    )


class WhatsAppCampaignRecipient(Base):
    __tablename__ = "whatsapp_campaign_recipients"
    __table_args__ = (
        UniqueConstraint("campaign_id", "phone_number", name="uq_whatsapp_campaign_recipient_phone"),
        Index("idx_whatsapp_campaign_recipients_status", "campaign_id", "status"),
        Index("idx_whatsapp_campaign_recipients_message", "message_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    campaign_id: Mapped[int] = mapped_column(ForeignKey("whatsapp_campaigns.id", ondelete="CASCADE"), nullable=False)
    customer_id: Mapped[int | None] = mapped_column(ForeignKey("whatsapp_customers.id", ondelete="SET NULL"), nullable=True)
    phone_number: Mapped[str] = mapped_column(String(32), nullable=False)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    variables: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    message_id: Mapped[str | None] = mapped_column(String(128), nullable=True)  # wamid
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_code: Mapped[str | None] = mapped_column(String(32), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    failed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    last_retry_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    campaign: Mapped[WhatsAppCampaign] = relationship(back_populates="recipients")


class WhatsAppCatalogProduct(Base):
    __tablename__ = "whatsapp_catalog_products"
    __table_args__ = (
        UniqueConstraint("retailer_id", name="uq_whatsapp_catalog_products_retailer"),
        Index("idx_whatsapp_catalog_products_tour_package", "tour_package_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tour_package_id: Mapped[int | None] = mapped_column(ForeignKey("tour_packages.id", ondelete="SET NULL"), nullable=True)
    retailer_id: Mapped[str] = mapped_column(String(128), nullable=False)  # our SKU in the Meta catalog
    meta_product_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    price: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="INR")
    is_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    url: Mapped[str | None] = mapped_column(Text, nullable=True)
    image_urls: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    highlights: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    inclusions: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    exclusions: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    sync_status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    last_sync_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    tour_package: Mapped["TourPackage"] = relationship(lazy="joined")
