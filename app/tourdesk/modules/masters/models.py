from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
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


class Location(Base):
    __tablename__ = "locations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    label: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)  # e.g. "Kashmir"
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    hotels: Mapped[list["Hotel"]] = relationship(back_populates="location", lazy="selectin")
    seasonal_periods: Mapped[list["SeasonalPeriod"]] = relationship(
        back_populates="location",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class Hotel(Base):
    __tablename__ = "hotels"
    __table_args__ = (Index("idx_hotels_location", "location_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    location_id: Mapped[int] = mapped_column(ForeignKey("locations.id", ondelete="CASCADE"), nullable=False)
    link: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    location: Mapped[Location] = relationship(back_populates="hotels", lazy="joined")


class RoomType(Base):
    __tablename__ = "room_types"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)  # e.g. "Deluxe"
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class OccupancyType(Base):
    __tablename__ = "occupancy_types"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)  # e.g. "Double", "Child No Bed"
    max_persons: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    rank: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class MealPlan(Base):
    __tablename__ = "meal_plans"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    code: Mapped[str] = mapped_column(String(16), nullable=False, unique=True)  # CP, MAP, AP, EP
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class VehicleType(Base):
    __tablename__ = "vehicle_types"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)  # e.g. "Innova"
    capacity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class HotelPricing(Base):
    __tablename__ = "hotel_pricing"
    __table_args__ = (
        Index("idx_hotel_pricing_lookup", "hotel_id", "room_type_id", "occupancy_type_id", "meal_plan_id"),
        Index("idx_hotel_pricing_dates", "start_date", "end_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    hotel_id: Mapped[int] = mapped_column(ForeignKey("hotels.id", ondelete="CASCADE"), nullable=False)
    room_type_id: Mapped[int] = mapped_column(ForeignKey("room_types.id", ondelete="RESTRICT"), nullable=False)
    occupancy_type_id: Mapped[int] = mapped_column(ForeignKey("occupancy_types.id", ondelete="RESTRICT"), nullable=False)
    meal_plan_id: Mapped[int | None] = mapped_column(ForeignKey("meal_plans.id", ondelete="SET NULL"), nullable=True)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)  # per room per night
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="INR")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    hotel: Mapped[Hotel] = relationship(lazy="joined")
    room_type: Mapped[RoomType] = relationship(lazy="joined")
    occupancy_type: Mapped[OccupancyType] = relationship(lazy="joined")
    meal_plan: Mapped[MealPlan | None] = relationship(lazy="joined")


class TransportPricing(Base):
    __tablename__ = "transport_pricing"
    __table_args__ = (
        Index("idx_transport_pricing_lookup", "location_id", "vehicle_type_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    location_id: Mapped[int] = mapped_column(ForeignKey("locations.id", ondelete="CASCADE"), nullable=False)
    vehicle_type_id: Mapped[int] = mapped_column(ForeignKey("vehicle_types.id", ondelete="RESTRICT"), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    transport_type: Mapped[str] = mapped_column(String(32), nullable=False, default="PerDay")  # PerDay, PerTrip
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    location: Mapped[Location] = relationship(lazy="joined")
    vehicle_type: Mapped[VehicleType] = relationship(lazy="joined")


class TourPackage(Base):
    __tablename__ = "tour_packages"
    __table_args__ = (Index("idx_tour_packages_location", "location_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    location_id: Mapped[int] = mapped_column(ForeignKey("locations.id", ondelete="RESTRICT"), nullable=False)
    tour_package_type: Mapped[str | None] = mapped_column(String(64), nullable=True)  # e.g. "Domestic", "Honeymoon"
    num_days_night: Mapped[str | None] = mapped_column(String(64), nullable=True)  # e.g. "4N/5D"
    price: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)  # headline "starting from" price
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    highlights: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    inclusions: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    exclusions: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    image_urls: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    is_archived: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    location: Mapped[Location] = relationship(lazy="joined")
    pricing_periods: Mapped[list["TourPackagePricing"]] = relationship(
        back_populates="tour_package",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="TourPackagePricing.start_date",
    )


class PricingAttribute(Base):
    __tablename__ = "pricing_attributes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)  # e.g. "Per Couple Cost", "CNB"
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class TourPackagePricing(Base):
    __tablename__ = "tour_package_pricing"
    __table_args__ = (Index("idx_tour_package_pricing_package", "tour_package_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tour_package_id: Mapped[int] = mapped_column(ForeignKey("tour_packages.id", ondelete="CASCADE"), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    meal_plan_id: Mapped[int | None] = mapped_column(ForeignKey("meal_plans.id", ondelete="SET NULL"), nullable=True)
    number_of_rooms: Mapped[int] = mapped_column(Integer, nullable=False, default=1)  # compared against Double pax
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    tour_package: Mapped[TourPackage] = relationship(back_populates="pricing_periods")
    meal_plan: Mapped[MealPlan | None] = relationship(lazy="joined")
    components: Mapped[list["PricingComponent"]] = relationship(
        back_populates="pricing",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class PricingComponent(Base):
    __tablename__ = "pricing_components"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tour_package_pricing_id: Mapped[int] = mapped_column(
        ForeignKey("tour_package_pricing.id", ondelete="CASCADE"), nullable=False
    )
    pricing_attribute_id: Mapped[int] = mapped_column(ForeignKey("pricing_attributes.id", ondelete="RESTRICT"), nullable=False)
    price: Mapped[str] = mapped_column(String(32), nullable=False, default="0")  # free-form, parsed leniently
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    pricing: Mapped[TourPackagePricing] = relationship(back_populates="components")
    pricing_attribute: Mapped[PricingAttribute] = relationship(lazy="joined")


class SeasonalPeriod(Base):
    __tablename__ = "seasonal_periods"
    __table_args__ = (
        UniqueConstraint("location_id", "name", name="uq_seasonal_periods_location_name"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    location_id: Mapped[int] = mapped_column(ForeignKey("locations.id", ondelete="CASCADE"), nullable=False)
    season_type: Mapped[str] = mapped_column(String(32), nullable=False)  # OFF_SEASON, PEAK_SEASON, SHOULDER_SEASON
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    start_month: Mapped[int] = mapped_column(Integer, nullable=False)
    start_day: Mapped[int] = mapped_column(Integer, nullable=False)
    end_month: Mapped[int] = mapped_column(Integer, nullable=False)
    end_day: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    location: Mapped[Location] = relationship(back_populates="seasonal_periods")
