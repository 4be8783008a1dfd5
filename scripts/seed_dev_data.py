#!/usr/bin/env python3
"""Seed a development database with demo organizations, identities, monitors and API keys.

Usage:
    uv run python scripts/seed_dev_data.py

Requires KS_DATABASE_URL (or defaults to localhost). Run migrations first.
"""

import asyncio
import json
import uuid
from datetime import datetime, timedelta, timezone

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from app.core.auth import hash_api_key
from app.core.config import get_settings

settings = get_settings()
DATABASE_URL = settings.database_url

# Deterministic UUIDs for reproducibility
ACME_ID = uuid.UUID("00000000-0000-0000-0000-000000000001")
TECHSTART_ID = uuid.UUID("00000000-0000-0000-0000-000000000002")
USER_IDS = {
    role: uuid.UUID(f"00000000-0000-0000-0000-0000000000{i + 10}")
    for i, role in enumerate(("owner", "admin", "member", "viewer"))
}
MONITOR_IDS = [uuid.UUID(f"00000000-0000-0000-0000-0000000003{i:02d}") for i in range(4)]
API_KEY_IDS = [uuid.UUID(f"00000000-0000-0000-0000-0000000004{i:02d}") for i in range(2)]

# Demo secrets are fixed so local tooling can reuse them between runs.
DEMO_KEYS = [
    (API_KEY_IDS[0], ACME_ID, "owner", "Acme CI", ["monitors:read", "monitors:write"]),
    (API_KEY_IDS[1], TECHSTART_ID, "admin", "TechStart read-only", ["organization:read", "monitors:read"]),
]


def demo_secret(name: str) -> str:
    return f"{settings.api_key_prefix}demo_{name.lower().replace(' ', '_')}_0000000000000000"


async def seed():
    engine = create_async_engine(DATABASE_URL)
    async_session = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    now = datetime.now(timezone.utc)

    async with async_session() as session:
        # Identities
        for role, uid in USER_IDS.items():
            await session.execute(text("""
                INSERT INTO users (id, external_id, email, first_name, last_name)
                VALUES (:id, :external_id, :email, :first, 'Demo')
                ON CONFLICT (id) DO NOTHING
            """), {
                "id": uid,
                "external_id": f"user_demo_{role}",
                "email": f"{role}@example.com",
                "first": role.title(),
            })

        # Organizations
        orgs = [
            (ACME_ID, "Acme Corporation", "acme-corp", "Demo organization for development", {
                "timezone": "America/New_York",
                "currency": "usd",
                "features": ["monitoring", "analytics", "api_keys"],
            }),
            (TECHSTART_ID, "TechStart Inc", "techstart-inc", "Early stage startup", {
                "timezone": "UTC",
                "currency": "usd",
                "features": ["monitoring"],
            }),
        ]
        for oid, name, slug, description, org_settings in orgs:
            await session.execute(text("""
                INSERT INTO organizations (id, name, slug, description, settings)
                VALUES (:id, :name, :slug, :description, CAST(:settings AS jsonb))
                ON CONFLICT (id) DO NOTHING
            """), {
                "id": oid,
                "name": name,
                "slug": slug,
                "description": description,
                "settings": json.dumps(org_settings),
            })

        # Memberships: Acme has one identity per role; the Acme admin owns TechStart
        memberships = [(ACME_ID, role, role.upper()) for role in USER_IDS]
        memberships.append((TECHSTART_ID, "admin", "OWNER"))
        for oid, user, role in memberships:
            await session.execute(text("""
                INSERT INTO organization_members (id, user_id, organization_id, role, joined_at)
                VALUES (:id, :uid, :oid, :role, :joined)
                ON CONFLICT (user_id, organization_id) DO NOTHING
            """), {"id": uuid.uuid4(), "uid": USER_IDS[user], "oid": oid, "role": role, "joined": now})

        # Subscriptions
        subscriptions = [
            (ACME_ID, "sub_demo_acme_pro", "ACTIVE", "price_pro_monthly", "Pro Plan", 4900, 30),
            (TECHSTART_ID, "sub_demo_techstart_starter", "TRIALING", "price_starter_monthly", "Starter Plan", 1900, 14),
        ]
        for oid, sub_id, status, plan_id, plan_name, amount, days in subscriptions:
            await session.execute(text("""
                INSERT INTO subscriptions (
                    id, organization_id, provider_subscription_id, status, plan_id, plan_name,
                    price_amount, current_period_start, current_period_end, trial_end
                )
                VALUES (:id, :oid, :sub_id, :status, :plan_id, :plan_name, :amount, :start, :end, :trial_end)
                ON CONFLICT (provider_subscription_id) DO NOTHING
            """), {
                "id": uuid.uuid4(),
                "oid": oid,
                "sub_id": sub_id,
                "status": status,
                "plan_id": plan_id,
                "plan_name": plan_name,
                "amount": amount,
                "start": now,
                "end": now + timedelta(days=days),
                "trial_end": now + timedelta(days=days) if status == "TRIALING" else None,
            })

        # Monitors
        monitor_specs = [
            (ACME_ID, "Production Website", "https://example.com", "GET", 200, 300),
            (ACME_ID, "API Endpoint Health", "https://api.example.com/health", "GET", 200, 60),
            (ACME_ID, "Database Connection", "https://db-check.example.com/ping", "HEAD", 204, 120),
            (TECHSTART_ID, "TechStart Landing Page", "https://techstart.example.com", "GET", 200, 600),
        ]
        for mid, (oid, name, url, method, expected, interval) in zip(MONITOR_IDS, monitor_specs):
            await session.execute(text("""
                INSERT INTO monitors (id, organization_id, name, url, method, expected_status, interval)
                VALUES (:id, :oid, :name, :url, :method, :expected, :interval)
                ON CONFLICT (id) DO NOTHING
            """), {
                "id": mid,
                "oid": oid,
                "name": name,
                "url": url,
                "method": method,
                "expected": expected,
                "interval": interval,
            })

        # API keys (only the keyed hash is stored)
        for kid, oid, user, name, permissions in DEMO_KEYS:
            secret = demo_secret(name)
            await session.execute(text("""
                INSERT INTO api_keys (id, organization_id, user_id, name, key_hash, prefix, permissions)
                VALUES (:id, :oid, :uid, :name, :hash, :prefix, CAST(:permissions AS jsonb))
                ON CONFLICT (id) DO NOTHING
            """), {
                "id": kid,
                "oid": oid,
                "uid": USER_IDS[user],
                "name": name,
                "hash": hash_api_key(secret),
                "prefix": secret[:12],
                "permissions": json.dumps(permissions),
            })

        await session.commit()

    await engine.dispose()
    print("Seeded 2 organizations, 4 identities, 4 monitors, 2 subscriptions.")
    for _, _, _, name, _ in DEMO_KEYS:
        print(f"  API key '{name}': {demo_secret(name)}")


if __name__ == "__main__":
    asyncio.run(seed())
