import sys
from pathlib import Path
import os

from werkzeug.security import generate_password_hash
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from contextlib import contextmanager

# Ensure repo root is on sys.path when running as a script (Windows-friendly).
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.tourdesk.models import Permission, Role, User
from app.tourdesk.modules.masters.models import MealPlan, OccupancyType, PricingAttribute

PERMISSIONS = (
    ("admin.view", "Admin: view shell"),
    # Master data
    ("masters.view", "Masters: view"),
    ("masters.edit", "Masters: edit"),
    ("masters.import", "Masters: import hotel pricing"),
    # Tour package queries
    ("tour_queries.view", "Tour Queries: view"),
    ("tour_queries.create", "Tour Queries: create"),
    ("tour_queries.edit", "Tour Queries: edit"),
    ("tour_queries.delete", "Tour Queries: delete"),
    # Pricing
    ("pricing.calculate", "Pricing: calculate"),
    # WhatsApp
    ("whatsapp.view", "WhatsApp: view chats"),
    ("whatsapp.send", "WhatsApp: send messages"),
    ("whatsapp.manage", "WhatsApp: manage templates, flows, customers, campaigns and catalog"),
)

MEAL_PLANS = (
    ("EP", "European Plan", "Room only"),
    ("CP", "Continental Plan", "Breakfast"),
    ("MAP", "Modified American Plan", "Breakfast and dinner"),
    ("AP", "American Plan", "All meals"),
)

# (name, max_persons, rank)
OCCUPANCY_TYPES = (
    ("Single", 1, 1),
    ("Double", 2, 2),
    ("Triple", 3, 3),
    ("Quad", 4, 4),
    ("Child With Bed", 1, 5),
    ("Child No Bed", 1, 6),
    ("Extra Bed", 1, 7),
)

PRICING_ATTRIBUTES = (
    "Per Couple Cost",
    "Per Person Cost",
    "Extra Bed",
    "CNB",
    "Child Below 5",
)


@contextmanager
def _session_scope(database_url: str):
    engine = create_engine(database_url, future=True)
    sm = sessionmaker(bind=engine, class_=Session, autoflush=False, autocommit=False, expire_on_commit=False, future=True)
    s: Session = sm()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()


def seed_reference_data(s: Session) -> None:
    """Default meal plans, occupancy types and pricing attributes (idempotent)."""
    for code, name, description in MEAL_PLANS:
        if not s.query(MealPlan).filter(MealPlan.code == code).one_or_none():
            s.add(MealPlan(code=code, name=name, description=description, is_active=True))
    for name, max_persons, rank in OCCUPANCY_TYPES:
        if not s.query(OccupancyType).filter(OccupancyType.name == name).one_or_none():
            s.add(OccupancyType(name=name, max_persons=max_persons, rank=rank, is_active=True))
    for i, name in enumerate(PRICING_ATTRIBUTES):
        if not s.query(PricingAttribute).filter(PricingAttribute.name == name).one_or_none():
            s.add(PricingAttribute(name=name, sort_order=i, is_active=True))


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed permissions/roles/admin user in an idempotent way.
    Does NOT overwrite an existing admin user's password.
    """
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@tourdesk.local").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///tourdesk.db").strip()

    # Use direct engine/session so this can run in release without importing app.wsgi (avoids recursion).
    with _session_scope(db_url) as s:
        perms: list[Permission] = []
        for key, name in PERMISSIONS:
            p = s.query(Permission).filter(Permission.key == key).one_or_none()
            if not p:
                p = Permission(key=key, name=name)
                s.add(p)
            perms.append(p)

        role_admin = s.query(Role).filter(Role.key == "admin").one_or_none()
        if not role_admin:
            role_admin = Role(key="admin", name="Administrator")
            s.add(role_admin)
        for p in perms:
            if p not in role_admin.permissions:
                role_admin.permissions.append(p)

        user = s.query(User).filter(User.email == admin_email).one_or_none()
        if not user:
            user = User(email=admin_email, password_hash=generate_password_hash(admin_password), is_active=True)
            s.add(user)
        if role_admin not in user.roles:
            user.roles.append(role_admin)

        seed_reference_data(s)

    print("Initialized database (seed_only).")
    print(f"Admin email: {admin_email}")
    print("Admin password: (from ADMIN_PASSWORD)")


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
