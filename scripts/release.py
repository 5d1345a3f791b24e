"""
Release phase for a TourDesk deploy.

Checks the environment (Postgres in production, WhatsApp credentials and
webhook secrets, S3 settings for query images and rate sheets), upgrades the
schema to head and re-runs the idempotent seed of permissions, the admin
account, meal plans and occupancy types.

Usage:
  python scripts/release.py
"""

from __future__ import annotations

import os
import sys
from collections.abc import Mapping
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

S3_SETTINGS = ("S3_ENDPOINT", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY")


def check_environment(environ: Mapping[str, str]) -> list[str]:
    """
    Raise RuntimeError for settings a release cannot run without.
    Returns warnings for features that will be unavailable.
    """
    def get(key: str) -> str:
        return (environ.get(key) or "").strip()

    db_url = get("DATABASE_URL")
    if not db_url:
        raise RuntimeError("Missing required environment variable DATABASE_URL.")
    production = get("ENV").lower() in ("prod", "production")
    if production and db_url.startswith("sqlite"):
        raise RuntimeError("Refusing to release TourDesk on sqlite in production. Set DATABASE_URL to Postgres.")
    if get("STORAGE_BACKEND").lower() == "s3":
        missing = [k for k in S3_SETTINGS if not get(k)]
        if missing:
            raise RuntimeError(f"STORAGE_BACKEND=s3 but {', '.join(missing)} not set.")

    warnings: list[str] = []
    if not (get("META_WHATSAPP_ACCESS_TOKEN") and get("META_WHATSAPP_PHONE_NUMBER_ID")):
        warnings.append("WhatsApp is not configured; send, template and campaign endpoints will return 503.")
    if not get("META_WHATSAPP_BUSINESS_ACCOUNT_ID"):
        warnings.append("META_WHATSAPP_BUSINESS_ACCOUNT_ID not set; template and flow management is unavailable.")
    if production and not get("META_APP_SECRET"):
        warnings.append("META_APP_SECRET not set; webhook signatures will not be verified.")
    if not get("META_WEBHOOK_VERIFY_TOKEN"):
        warnings.append("META_WEBHOOK_VERIFY_TOKEN not set; Meta cannot subscribe the webhook.")
    if not get("META_WHATSAPP_CATALOG_ID"):
        warnings.append("META_WHATSAPP_CATALOG_ID not set; catalog sync and sharing are disabled.")
    return warnings


def run_release() -> None:
    warnings = check_environment(os.environ)
    db_url = os.environ["DATABASE_URL"].strip()
    env = (os.environ.get("ENV") or "").strip().lower()

    print("=== TourDesk release start ===", flush=True)
    print(f"ENV={env or '(unset)'}", flush=True)
    for w in warnings:
        print(f"WARNING: {w}", flush=True)

    from alembic import command
    from alembic.config import Config

    print("Upgrading schema to head...", flush=True)
    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("sqlalchemy.url", db_url.replace("%", "%%"))
    command.upgrade(cfg, "head")

    print("Seeding permissions, admin account and meal plans / occupancy types...", flush=True)
    from scripts import init_db

    init_db.seed_only(database_url=db_url)
    print("=== TourDesk release done ===", flush=True)


def main() -> None:
    run_release()


if __name__ == "__main__":
    main()
