from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import JSON, Boolean, Date, DateTime, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.tourdesk.models import Base

if TYPE_CHECKING:
    from app.tourdesk.modules.masters.models import Hotel, Location


class TourPackageQuery(Base):
    __tablename__ = "tour_package_queries"
    __table_args__ = (
        Index("idx_tpq_location", "location_id"),
        Index("idx_tpq_associate", "associate_partner_id"),
        Index("idx_tpq_created_at", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    inquiry_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    tour_package_query_number: Mapped[str | None] = mapped_column(String(64), nullable=True)  # e.g. "TPQ-20240501-0001"
    tour_package_query_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    tour_package_query_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    customer_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    customer_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    num_days_night: Mapped[str | None] = mapped_column(String(64), nullable=True)
    location_id: Mapped[int] = mapped_column(ForeignKey("locations.id", ondelete="RESTRICT"), nullable=False)
    period: Mapped[str | None] = mapped_column(String(128), nullable=True)
    tour_highlights: Mapped[str | None] = mapped_column(Text, nullable=True)
    tour_starts_from: Mapped[date | None] = mapped_column(Date, nullable=True)
    tour_ends_on: Mapped[date | None] = mapped_column(Date, nullable=True)
    transport: Mapped[str | None] = mapped_column(String(255), nullable=True)
    pickup_location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    drop_location: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Pax
    num_adults: Mapped[str | None] = mapped_column(String(16), nullable=True)
    num_child_5_to_12: Mapped[str | None] = mapped_column(String(16), nullable=True)
    num_child_0_to_5: Mapped[str | None] = mapped_column(String(16), nullable=True)

    # Pricing (free-form strings entered by sales, plus the computed total)
    price: Mapped[str | None] = mapped_column(String(64), nullable=True)
    price_per_adult: Mapped[str | None] = mapped_column(String(64), nullable=True)
    price_per_child_or_extra_bed: Mapped[str | None] = mapped_column(String(64), nullable=True)
    price_per_child_5_to_12_no_bed: Mapped[str | None] = mapped_column(String(64), nullable=True)
    price_per_child_with_seat_below_5: Mapped[str | None] = mapped_column(String(64), nullable=True)
    total_price: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    pricing_section: Mapped[list] = mapped_column(JSON, nullable=False, default=list)  # [{name, price, description}]
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Pricing inputs kept so a quote can be re-priced
    selected_template_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    selected_template_type: Mapped[str | None] = mapped_column(String(32), nullable=True)  # "TourPackage"
    selected_meal_plan_id: Mapped[int | None] = mapped_column(ForeignKey("meal_plans.id", ondelete="SET NULL"), nullable=True)
    occupancy_selections: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    # Policies (JSON lists)
    inclusions: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    exclusions: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    important_notes: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    payment_policy: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    useful_tip: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    cancellation_policy: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    airline_cancellation_policy: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    terms_conditions: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    kitchen_group_policy: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    disclaimer: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Ownership
    assigned_to: Mapped[str | None] = mapped_column(String(255), nullable=True)
    assigned_to_mobile_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    assigned_to_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    associate_partner_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    is_featured: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_archived: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    updated_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    location: Mapped["Location"] = relationship(lazy="joined")
    images: Mapped[list["QueryImage"]] = relationship(
        back_populates="query", cascade="all, delete-orphan", lazy="selectin", order_by="QueryImage.id"
    )
    flight_details: Mapped[list["FlightDetail"]] = relationship(
        back_populates="query", cascade="all, delete-orphan", lazy="selectin", order_by="FlightDetail.id"
    )
    itineraries: Mapped[list["Itinerary"]] = relationship(
        back_populates="query", cascade="all, delete-orphan", lazy="selectin", order_by="Itinerary.day_number"
    )


class QueryImage(Base):
    __tablename__ = "tour_package_query_images"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tour_package_query_id: Mapped[int] = mapped_column(
        ForeignKey("tour_package_queries.id", ondelete="CASCADE"), nullable=False
    )
    url: Mapped[str] = mapped_column(String(1024), nullable=False)
    storage_key: Mapped[str | None] = mapped_column(String(512), nullable=True)  # set when uploaded through us
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    query: Mapped[TourPackageQuery] = relationship(back_populates="images")


class FlightDetail(Base):
    __tablename__ = "flight_details"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tour_package_query_id: Mapped[int] = mapped_column(
        ForeignKey("tour_package_queries.id", ondelete="CASCADE"), nullable=False
    )
    flight_date: Mapped[str | None] = mapped_column(String(32), nullable=True)
    flight_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    flight_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    from_place: Mapped[str | None] = mapped_column(String(128), nullable=True)
    to_place: Mapped[str | None] = mapped_column(String(128), nullable=True)
    departure_time: Mapped[str | None] = mapped_column(String(32), nullable=True)
    arrival_time: Mapped[str | None] = mapped_column(String(32), nullable=True)
    flight_duration: Mapped[str | None] = mapped_column(String(32), nullable=True)

    query: Mapped[TourPackageQuery] = relationship(back_populates="flight_details")


class Itinerary(Base):
    __tablename__ = "itineraries"
    __table_args__ = (Index("idx_itineraries_query", "tour_package_query_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tour_package_query_id: Mapped[int] = mapped_column(
        ForeignKey("tour_package_queries.id", ondelete="CASCADE"), nullable=False
    )
    day_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    days: Mapped[str | None] = mapped_column(String(64), nullable=True)
    itinerary_title: Mapped[str | None] = mapped_column(Text, nullable=True)
    itinerary_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    location_id: Mapped[int | None] = mapped_column(ForeignKey("locations.id", ondelete="SET NULL"), nullable=True)
    hotel_id: Mapped[int | None] = mapped_column(ForeignKey("hotels.id", ondelete="SET NULL"), nullable=True)
    number_of_rooms: Mapped[str | None] = mapped_column(String(16), nullable=True)
    room_category: Mapped[str | None] = mapped_column(String(128), nullable=True)
    meals_included: Mapped[str | None] = mapped_column(String(128), nullable=True)
    image_urls: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    query: Mapped[TourPackageQuery] = relationship(back_populates="itineraries")
    hotel: Mapped["Hotel"] = relationship(lazy="joined")
    activities: Mapped[list["Activity"]] = relationship(
        back_populates="itinerary", cascade="all, delete-orphan", lazy="selectin", order_by="Activity.id"
    )
    room_allocations: Mapped[list["RoomAllocation"]] = relationship(
        back_populates="itinerary", cascade="all, delete-orphan", lazy="selectin", order_by="RoomAllocation.id"
    )
    transport_details: Mapped[list["TransportDetail"]] = relationship(
        back_populates="itinerary", cascade="all, delete-orphan", lazy="selectin", order_by="TransportDetail.id"
    )


class Activity(Base):
    __tablename__ = "activities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    itinerary_id: Mapped[int] = mapped_column(ForeignKey("itineraries.id", ondelete="CASCADE"), nullable=False)
    activity_title: Mapped[str | None] = mapped_column(Text, nullable=True)
    activity_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    location_id: Mapped[int | None] = mapped_column(ForeignKey("locations.id", ondelete="SET NULL"), nullable=True)
    image_urls: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    itinerary: Mapped[Itinerary] = relationship(back_populates="activities")


class RoomAllocation(Base):
    __tablename__ = "room_allocations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    itinerary_id: Mapped[int] = mapped_column(ForeignKey("itineraries.id", ondelete="CASCADE"), nullable=False)
    room_type_id: Mapped[int | None] = mapped_column(ForeignKey("room_types.id", ondelete="SET NULL"), nullable=True)
    occupancy_type_id: Mapped[int | None] = mapped_column(ForeignKey("occupancy_types.id", ondelete="SET NULL"), nullable=True)
    meal_plan_id: Mapped[int | None] = mapped_column(ForeignKey("meal_plans.id", ondelete="SET NULL"), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    guest_names: Mapped[str | None] = mapped_column(Text, nullable=True)
    voucher_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    custom_room_type: Mapped[str | None] = mapped_column(String(128), nullable=True)  # when the hotel's room isn't a master type

    itinerary: Mapped[Itinerary] = relationship(back_populates="room_allocations")


class TransportDetail(Base):
    __tablename__ = "transport_details"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    itinerary_id: Mapped[int] = mapped_column(ForeignKey("itineraries.id", ondelete="CASCADE"), nullable=False)
    vehicle_type_id: Mapped[int | None] = mapped_column(ForeignKey("vehicle_types.id", ondelete="SET NULL"), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    is_airport_pickup_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_airport_drop_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    pickup_location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    drop_location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    itinerary: Mapped[Itinerary] = relationship(back_populates="transport_details")
