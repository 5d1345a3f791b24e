"""initial schema

Revision ID: 3f1a9c2d7b40
Revises:
Create Date: 2026-10-19 09:12:41.218304

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f1a9c2d7b40'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now())


def _updated_at() -> sa.Column:
    return sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now())


def _user_fk(name: str) -> sa.Column:
    return sa.Column(name, sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)


def upgrade() -> None:
    """Create auth, master data, tour query and WhatsApp tables."""
    # Auth / audit
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(320), nullable=False, unique=True),
        sa.Column("display_name", sa.String(255), nullable=True),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _created_at(),
    )
    op.create_table(
        "roles",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("key", sa.String(64), nullable=False, unique=True),
        sa.Column("name", sa.String(128), nullable=False),
        _created_at(),
    )
    op.create_table(
        "permissions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("key", sa.String(128), nullable=False, unique=True),
        sa.Column("name", sa.String(128), nullable=False),
        _created_at(),
    )
    op.create_table(
        "user_roles",
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
    )
    op.create_table(
        "role_permissions",
        sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("permission_id", sa.Integer(), sa.ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True),
    )
    op.create_table(
        "audit_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        _created_at(),
        sa.Column("request_id", sa.String(64), nullable=True),
        sa.Column("client_ip", sa.String(64), nullable=True),
        _user_fk("actor_user_id"),
        sa.Column("actor_user_email", sa.String(320), nullable=True),
        sa.Column("action", sa.String(128), nullable=False),
        sa.Column("entity_type", sa.String(128), nullable=True),
        sa.Column("entity_id", sa.String(128), nullable=True),
        sa.Column("reason", sa.String(512), nullable=True),
        sa.Column("metadata_json", sa.Text(), nullable=True),
    )
    op.create_index("idx_audit_events_entity", "audit_events", ["entity_type", "entity_id"])
    op.create_index("idx_audit_events_created_at", "audit_events", ["created_at"])

    # Master data
    op.create_table(
        "locations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("label", sa.String(255), nullable=False, unique=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _created_at(),
    )
    op.create_table(
        "hotels",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("location_id", sa.Integer(), sa.ForeignKey("locations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("link", sa.String(1024), nullable=True),
        _created_at(),
    )
    op.create_index("idx_hotels_location", "hotels", ["location_id"])
    op.create_table(
        "room_types",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(128), nullable=False, unique=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_table(
        "occupancy_types",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(128), nullable=False, unique=True),
        sa.Column("max_persons", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("rank", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_table(
        "meal_plans",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("code", sa.String(16), nullable=False, unique=True),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_table(
        "vehicle_types",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(128), nullable=False, unique=True),
        sa.Column("capacity", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_table(
        "hotel_pricing",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("hotel_id", sa.Integer(), sa.ForeignKey("hotels.id", ondelete="CASCADE"), nullable=False),
        sa.Column("room_type_id", sa.Integer(), sa.ForeignKey("room_types.id", ondelete="RESTRICT"), nullable=False),
        sa.Column(
            "occupancy_type_id", sa.Integer(), sa.ForeignKey("occupancy_types.id", ondelete="RESTRICT"), nullable=False
        ),
        sa.Column("meal_plan_id", sa.Integer(), sa.ForeignKey("meal_plans.id", ondelete="SET NULL"), nullable=True),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("price", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(8), nullable=False, server_default="INR"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _created_at(),
        _user_fk("created_by_user_id"),
    )
    op.create_index(
        "idx_hotel_pricing_lookup",
        "hotel_pricing",
        ["hotel_id", "room_type_id", "occupancy_type_id", "meal_plan_id"],
    )
    op.create_index("idx_hotel_pricing_dates", "hotel_pricing", ["start_date", "end_date"])
    op.create_table(
        "transport_pricing",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("location_id", sa.Integer(), sa.ForeignKey("locations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("vehicle_type_id", sa.Integer(), sa.ForeignKey("vehicle_types.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("price", sa.Numeric(12, 2), nullable=False),
        sa.Column("transport_type", sa.String(32), nullable=False, server_default="PerDay"),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _created_at(),
    )
    op.create_index("idx_transport_pricing_lookup", "transport_pricing", ["location_id", "vehicle_type_id"])
    op.create_table(
        "tour_packages",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("location_id", sa.Integer(), sa.ForeignKey("locations.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("tour_package_type", sa.String(64), nullable=True),
        sa.Column("num_days_night", sa.String(64), nullable=True),
        sa.Column("price", sa.Numeric(12, 2), nullable=True),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column("highlights", sa.JSON(), nullable=False),
        sa.Column("inclusions", sa.JSON(), nullable=False),
        sa.Column("exclusions", sa.JSON(), nullable=False),
        sa.Column("image_urls", sa.JSON(), nullable=False),
        sa.Column("is_archived", sa.Boolean(), nullable=False, server_default=sa.false()),
        _created_at(),
        _updated_at(),
    )
    op.create_index("idx_tour_packages_location", "tour_packages", ["location_id"])
    op.create_table(
        "pricing_attributes",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(128), nullable=False, unique=True),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_table(
        "tour_package_pricing",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "tour_package_id", sa.Integer(), sa.ForeignKey("tour_packages.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("meal_plan_id", sa.Integer(), sa.ForeignKey("meal_plans.id", ondelete="SET NULL"), nullable=True),
        sa.Column("number_of_rooms", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _created_at(),
    )
    op.create_index("idx_tour_package_pricing_package", "tour_package_pricing", ["tour_package_id"])
    op.create_table(
        "pricing_components",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "tour_package_pricing_id",
            sa.Integer(),
            sa.ForeignKey("tour_package_pricing.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "pricing_attribute_id",
            sa.Integer(),
            sa.ForeignKey("pricing_attributes.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("price", sa.String(32), nullable=False, server_default="0"),
        sa.Column("description", sa.Text(), nullable=True),
    )
    op.create_table(
        "seasonal_periods",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("location_id", sa.Integer(), sa.ForeignKey("locations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("season_type", sa.String(32), nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("start_month", sa.Integer(), nullable=False),
        sa.Column("start_day", sa.Integer(), nullable=False),
        sa.Column("end_month", sa.Integer(), nullable=False),
        sa.Column("end_day", sa.Integer(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _created_at(),
        _updated_at(),
        sa.UniqueConstraint("location_id", "name", name="uq_seasonal_periods_location_name"),
    )

    # Tour package queries
    op.create_table(
        "tour_package_queries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("inquiry_id", sa.String(64), nullable=True),
        sa.Column("tour_package_query_number", sa.String(64), nullable=True),
        sa.Column("tour_package_query_name", sa.String(255), nullable=True),
        sa.Column("tour_package_query_type", sa.String(64), nullable=True),
        sa.Column("customer_name", sa.String(255), nullable=True),
        sa.Column("customer_number", sa.String(64), nullable=True),
        sa.Column("num_days_night", sa.String(64), nullable=True),
        sa.Column("location_id", sa.Integer(), sa.ForeignKey("locations.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("period", sa.String(128), nullable=True),
        sa.Column("tour_highlights", sa.Text(), nullable=True),
        sa.Column("tour_starts_from", sa.Date(), nullable=True),
        sa.Column("tour_ends_on", sa.Date(), nullable=True),
        sa.Column("transport", sa.String(255), nullable=True),
        sa.Column("pickup_location", sa.String(255), nullable=True),
        sa.Column("drop_location", sa.String(255), nullable=True),
        sa.Column("num_adults", sa.String(16), nullable=True),
        sa.Column("num_child_5_to_12", sa.String(16), nullable=True),
        sa.Column("num_child_0_to_5", sa.String(16), nullable=True),
        sa.Column("price", sa.String(64), nullable=True),
        sa.Column("price_per_adult", sa.String(64), nullable=True),
        sa.Column("price_per_child_or_extra_bed", sa.String(64), nullable=True),
        sa.Column("price_per_child_5_to_12_no_bed", sa.String(64), nullable=True),
        sa.Column("price_per_child_with_seat_below_5", sa.String(64), nullable=True),
        sa.Column("total_price", sa.Numeric(14, 2), nullable=True),
        sa.Column("pricing_section", sa.JSON(), nullable=False),
        sa.Column("remarks", sa.Text(), nullable=True),
        sa.Column("selected_template_id", sa.Integer(), nullable=True),
        sa.Column("selected_template_type", sa.String(32), nullable=True),
        sa.Column(
            "selected_meal_plan_id", sa.Integer(), sa.ForeignKey("meal_plans.id", ondelete="SET NULL"), nullable=True
        ),
        sa.Column("occupancy_selections", sa.JSON(), nullable=False),
        sa.Column("inclusions", sa.JSON(), nullable=False),
        sa.Column("exclusions", sa.JSON(), nullable=False),
        sa.Column("important_notes", sa.JSON(), nullable=False),
        sa.Column("payment_policy", sa.JSON(), nullable=False),
        sa.Column("useful_tip", sa.JSON(), nullable=False),
        sa.Column("cancellation_policy", sa.JSON(), nullable=False),
        sa.Column("airline_cancellation_policy", sa.JSON(), nullable=False),
        sa.Column("terms_conditions", sa.JSON(), nullable=False),
        sa.Column("kitchen_group_policy", sa.JSON(), nullable=False),
        sa.Column("disclaimer", sa.Text(), nullable=True),
        sa.Column("assigned_to", sa.String(255), nullable=True),
        sa.Column("assigned_to_mobile_number", sa.String(64), nullable=True),
        sa.Column("assigned_to_email", sa.String(320), nullable=True),
        sa.Column("associate_partner_id", sa.String(64), nullable=True),
        sa.Column("is_featured", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_archived", sa.Boolean(), nullable=False, server_default=sa.false()),
        _created_at(),
        _updated_at(),
        _user_fk("created_by_user_id"),
        _user_fk("updated_by_user_id"),
    )
    op.create_index("idx_tpq_location", "tour_package_queries", ["location_id"])
    op.create_index("idx_tpq_associate", "tour_package_queries", ["associate_partner_id"])
    op.create_index("idx_tpq_created_at", "tour_package_queries", ["created_at"])
    op.create_table(
        "tour_package_query_images",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "tour_package_query_id",
            sa.Integer(),
            sa.ForeignKey("tour_package_queries.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("url", sa.String(1024), nullable=False),
        sa.Column("storage_key", sa.String(512), nullable=True),
        _created_at(),
    )
    op.create_table(
        "flight_details",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "tour_package_query_id",
            sa.Integer(),
            sa.ForeignKey("tour_package_queries.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("flight_date", sa.String(32), nullable=True),
        sa.Column("flight_name", sa.String(128), nullable=True),
        sa.Column("flight_number", sa.String(64), nullable=True),
        sa.Column("from_place", sa.String(128), nullable=True),
        sa.Column("to_place", sa.String(128), nullable=True),
        sa.Column("departure_time", sa.String(32), nullable=True),
        sa.Column("arrival_time", sa.String(32), nullable=True),
        sa.Column("flight_duration", sa.String(32), nullable=True),
    )
    op.create_table(
        "itineraries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "tour_package_query_id",
            sa.Integer(),
            sa.ForeignKey("tour_package_queries.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("day_number", sa.Integer(), nullable=True),
        sa.Column("days", sa.String(64), nullable=True),
        sa.Column("itinerary_title", sa.Text(), nullable=True),
        sa.Column("itinerary_description", sa.Text(), nullable=True),
        sa.Column("location_id", sa.Integer(), sa.ForeignKey("locations.id", ondelete="SET NULL"), nullable=True),
        sa.Column("hotel_id", sa.Integer(), sa.ForeignKey("hotels.id", ondelete="SET NULL"), nullable=True),
        sa.Column("number_of_rooms", sa.String(16), nullable=True),
        sa.Column("room_category", sa.String(128), nullable=True),
        sa.Column("meals_included", sa.String(128), nullable=True),
        sa.Column("image_urls", sa.JSON(), nullable=False),
    )
    op.create_index("idx_itineraries_query", "itineraries", ["tour_package_query_id"])
    op.create_table(
        "activities",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("itinerary_id", sa.Integer(), sa.ForeignKey("itineraries.id", ondelete="CASCADE"), nullable=False),
        sa.Column("activity_title", sa.Text(), nullable=True),
        sa.Column("activity_description", sa.Text(), nullable=True),
        sa.Column("location_id", sa.Integer(), sa.ForeignKey("locations.id", ondelete="SET NULL"), nullable=True),
        sa.Column("image_urls", sa.JSON(), nullable=False),
    )
    op.create_table(
        "room_allocations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("itinerary_id", sa.Integer(), sa.ForeignKey("itineraries.id", ondelete="CASCADE"), nullable=False),
        sa.Column("room_type_id", sa.Integer(), sa.ForeignKey("room_types.id", ondelete="SET NULL"), nullable=True),
        sa.Column(
            "occupancy_type_id", sa.Integer(), sa.ForeignKey("occupancy_types.id", ondelete="SET NULL"), nullable=True
        ),
        sa.Column("meal_plan_id", sa.Integer(), sa.ForeignKey("meal_plans.id", ondelete="SET NULL"), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("guest_names", sa.Text(), nullable=True),
        sa.Column("voucher_number", sa.String(64), nullable=True),
        sa.Column("custom_room_type", sa.String(128), nullable=True),
    )
    op.create_table(
        "transport_details",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("itinerary_id", sa.Integer(), sa.ForeignKey("itineraries.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "vehicle_type_id", sa.Integer(), sa.ForeignKey("vehicle_types.id", ondelete="SET NULL"), nullable=True
        ),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("is_airport_pickup_required", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_airport_drop_required", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("pickup_location", sa.String(255), nullable=True),
        sa.Column("drop_location", sa.String(255), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
    )

    # WhatsApp
    op.create_table(
        "whatsapp_customers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("first_name", sa.String(128), nullable=False),
        sa.Column("last_name", sa.String(128), nullable=True),
        sa.Column("phone_number", sa.String(32), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("tags", sa.JSON(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("is_opted_in", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("imported_from", sa.String(128), nullable=True),
        sa.Column("imported_at", sa.DateTime(), nullable=True),
        sa.Column("last_contacted_at", sa.DateTime(), nullable=True),
        _created_at(),
        _updated_at(),
        sa.UniqueConstraint("phone_number", name="uq_whatsapp_customers_phone"),
    )
    op.create_index("idx_whatsapp_customers_created_at", "whatsapp_customers", ["created_at"])
    op.create_table(
        "whatsapp_messages",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("message_id", sa.String(128), nullable=True),
        sa.Column("from_address", sa.String(64), nullable=True),
        sa.Column("to_address", sa.String(64), nullable=True),
        sa.Column("body", sa.Text(), nullable=True),
        sa.Column("direction", sa.String(16), nullable=False, server_default="outbound"),
        sa.Column("status", sa.String(32), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("error_code", sa.String(32), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("sent_at", sa.DateTime(), nullable=True),
        sa.Column("delivered_at", sa.DateTime(), nullable=True),
        sa.Column("read_at", sa.DateTime(), nullable=True),
        sa.Column(
            "customer_id", sa.Integer(), sa.ForeignKey("whatsapp_customers.id", ondelete="SET NULL"), nullable=True
        ),
        _created_at(),
        _updated_at(),
        _user_fk("created_by_user_id"),
    )
    op.create_index("idx_whatsapp_messages_wamid", "whatsapp_messages", ["message_id"])
    op.create_index("idx_whatsapp_messages_from", "whatsapp_messages", ["from_address"])
    op.create_index("idx_whatsapp_messages_to", "whatsapp_messages", ["to_address"])
    op.create_index("idx_whatsapp_messages_created_at", "whatsapp_messages", ["created_at"])
    op.create_table(
        "whatsapp_campaigns",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("template_name", sa.String(255), nullable=False),
        sa.Column("template_language", sa.String(16), nullable=False, server_default="en_US"),
        sa.Column("template_variables", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="draft"),
        sa.Column("scheduled_for", sa.DateTime(), nullable=True),
        sa.Column("rate_limit", sa.Integer(), nullable=False, server_default="10"),
        sa.Column("send_window_start", sa.Integer(), nullable=True),
        sa.Column("send_window_end", sa.Integer(), nullable=True),
        sa.Column("total_recipients", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("sent_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("delivered_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("read_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("failed_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("responded_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("started_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        _created_at(),
        _updated_at(),
        _user_fk("created_by_user_id"),
    )
    op.create_index("idx_whatsapp_campaigns_status", "whatsapp_campaigns", ["status"])
    op.create_table(
        "whatsapp_campaign_recipients",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "campaign_id", sa.Integer(), sa.ForeignKey("whatsapp_campaigns.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column(
            "customer_id", sa.Integer(), sa.ForeignKey("whatsapp_customers.id", ondelete="SET NULL"), nullable=True
        ),
        sa.Column("phone_number", sa.String(32), nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("variables", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("message_id", sa.String(128), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error_code", sa.String(32), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("sent_at", sa.DateTime(), nullable=True),
        sa.Column("delivered_at", sa.DateTime(), nullable=True),
        sa.Column("read_at", sa.DateTime(), nullable=True),
        sa.Column("failed_at", sa.DateTime(), nullable=True),
        sa.Column("last_retry_at", sa.DateTime(), nullable=True),
        _created_at(),
        sa.UniqueConstraint("campaign_id", "phone_number", name="uq_whatsapp_campaign_recipient_phone"),
    )
    op.create_index(
        "idx_whatsapp_campaign_recipients_status", "whatsapp_campaign_recipients", ["campaign_id", "status"]
    )
    op.create_index("idx_whatsapp_campaign_recipients_message", "whatsapp_campaign_recipients", ["message_id"])
    op.create_table(
        "whatsapp_catalog_products",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "tour_package_id", sa.Integer(), sa.ForeignKey("tour_packages.id", ondelete="SET NULL"), nullable=True
        ),
        sa.Column("retailer_id", sa.String(128), nullable=False),
        sa.Column("meta_product_id", sa.String(128), nullable=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column("price", sa.Numeric(12, 2), nullable=True),
        sa.Column("currency", sa.String(8), nullable=False, server_default="INR"),
        sa.Column("is_available", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("url", sa.Text(), nullable=True),
        sa.Column("image_urls", sa.JSON(), nullable=False),
        sa.Column("highlights", sa.JSON(), nullable=False),
        sa.Column("inclusions", sa.JSON(), nullable=False),
        sa.Column("exclusions", sa.JSON(), nullable=False),
        sa.Column("sync_status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("last_sync_error", sa.Text(), nullable=True),
        sa.Column("last_synced_at", sa.DateTime(), nullable=True),
        _created_at(),
        _updated_at(),
        sa.UniqueConstraint("retailer_id", name="uq_whatsapp_catalog_products_retailer"),
    )
    op.create_index(
        "idx_whatsapp_catalog_products_tour_package", "whatsapp_catalog_products", ["tour_package_id"]
    )


def downgrade() -> None:
    """Drop every table in reverse dependency order."""
    for table in (
        "whatsapp_catalog_products",
        "whatsapp_campaign_recipients",
        "whatsapp_campaigns",
        "whatsapp_messages",
        "whatsapp_customers",
        "transport_details",
        "room_allocations",
        "activities",
        "itineraries",
        "flight_details",
        "tour_package_query_images",
        "tour_package_queries",
        "seasonal_periods",
        "pricing_components",
        "tour_package_pricing",
        "pricing_attributes",
        "tour_packages",
        "transport_pricing",
        "hotel_pricing",
        "vehicle_types",
        "meal_plans",
        "occupancy_types",
        "room_types",
        "hotels",
        "locations",
        "audit_events",
        "role_permissions",
        "user_roles",
        "permissions",
        "roles",
        "users",
    ):
        op.drop_table(table)
