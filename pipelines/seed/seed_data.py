"""
Seed data generator -- synthetic game telemetry rollups.

Generates, for a handful of games over the last 120 days:
  - monetization_daily_rollups  (one row per game/day)
  - active_users_daily          (per game/day/platform/country)
  - cohort_retention_daily      (per game/install day/platform/country, day 0/1/7)

Tables are created if missing; rows for the seeded games are replaced.
Run:  python -m pipelines.seed.seed_data
"""
from __future__ import annotations

import os
import random
import uuid
from datetime import date, timedelta
from pathlib import Path

from dotenv import load_dotenv
from faker import Faker
from sqlalchemy import create_engine, text

# ── Load .env from project root ─────────────────────────
_PROJECT_ROOT = Path(__file__).resolve().parents[2]
load_dotenv(_PROJECT_ROOT / ".env")

fake = Faker()
Faker.seed(42)
random.seed(42)

# ── Tunables ─────────────────────────────────────────────
NUM_GAMES = 3
NUM_DAYS = 120
PLATFORMS = ["ios", "android"]
PLATFORM_WEIGHTS = {"ios": 0.4, "android": 0.6}
COUNTRIES = {"US": 0.30, "GB": 0.10, "DE": 0.10, "IN": 0.20, "BR": 0.15, "JP": 0.15}
D1_RATE = (0.30, 0.45)
D7_RATE = (0.08, 0.18)
ARPDAU = (0.04, 0.12)

_DDL = [
    """
    CREATE TABLE IF NOT EXISTS "monetization_daily_rollups" (
        "id" TEXT PRIMARY KEY,
        "gameId" TEXT NOT NULL,
        "date" TIMESTAMPTZ NOT NULL,
        "totalRevenueUsd" DOUBLE PRECISION NOT NULL DEFAULT 0,
        "adRevenueUsd" DOUBLE PRECISION NOT NULL DEFAULT 0,
        "iapRevenueUsd" DOUBLE PRECISION NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS "active_users_daily" (
        "id" TEXT PRIMARY KEY,
        "gameId" TEXT NOT NULL,
        "date" TIMESTAMPTZ NOT NULL,
        "platform" TEXT NOT NULL DEFAULT '',
        "countryCode" TEXT NOT NULL DEFAULT '',
        "dau" INTEGER NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS "cohort_retention_daily" (
        "id" TEXT PRIMARY KEY,
        "gameId" TEXT NOT NULL,
        "installDate" TIMESTAMPTZ NOT NULL,
        "dayIndex" INTEGER NOT NULL,
        "platform" TEXT NOT NULL DEFAULT '',
        "countryCode" TEXT NOT NULL DEFAULT '',
        "cohortSize" INTEGER NOT NULL DEFAULT 0,
        "retainedUsers" INTEGER NOT NULL DEFAULT 0
    )
    """,
]


def _db_url() -> str:
    user = os.getenv("POSTGRES_USER", "copilot")
    pw = os.getenv("POSTGRES_PASSWORD", "copilot_pw")
    host = os.getenv("POSTGRES_HOST", "localhost")
    port = os.getenv("POSTGRES_PORT", "5432")
    db = os.getenv("POSTGRES_DB", "analytics")
    return f"postgresql://{user}:{pw}@{host}:{port}/{db}"


def _id() -> str:
    return str(uuid.UUID(int=random.getrandbits(128)))


# ── Generators ───────────────────────────────────────────

def gen_games() -> list[dict]:
    return [
        {"game_id": fake.slug(), "base_dau": random.randint(5_000, 50_000)}
        for _ in range(NUM_GAMES)
    ]


def _days() -> list[date]:
    today = date.today()
    return [today - timedelta(days=i) for i in range(NUM_DAYS - 1, -1, -1)]


def gen_activity(game: dict) -> tuple[list[dict], list[dict]]:
    """Returns (active_users rows, monetization rows) for one game."""
    dau_rows: list[dict] = []
    revenue_rows: list[dict] = []
    for i, day in enumerate(_days()):
        trend = 1 + 0.002 * i
        weekend = 1.15 if day.weekday() >= 5 else 1.0
        total_dau = 0
        for platform in PLATFORMS:
            for country, share in COUNTRIES.items():
                dau = int(game["base_dau"] * trend * weekend * PLATFORM_WEIGHTS[platform] * share
                          * random.uniform(0.85, 1.15))
                total_dau += dau
                dau_rows.append({
                    "id": _id(), "gameId": game["game_id"], "date": day,
                    "platform": platform, "countryCode": country, "dau": dau,
                })
        total = round(total_dau * random.uniform(*ARPDAU), 2)
        ad_share = random.uniform(0.3, 0.6)
        revenue_rows.append({
            "id": _id(), "gameId": game["game_id"], "date": day,
            "totalRevenueUsd": total,
            "adRevenueUsd": round(total * ad_share, 2),
            "iapRevenueUsd": round(total * (1 - ad_share), 2),
        })
    return dau_rows, revenue_rows


def gen_cohorts(game: dict) -> list[dict]:
    rows: list[dict] = []
    for day in _days():
        for platform in PLATFORMS:
            for country, share in COUNTRIES.items():
                size = int(game["base_dau"] * 0.05 * PLATFORM_WEIGHTS[platform] * share
                           * random.uniform(0.7, 1.3))
                retained = {
                    0: size,
                    1: int(size * random.uniform(*D1_RATE)),
                    7: int(size * random.uniform(*D7_RATE)),
                }
                for day_index, users in retained.items():
                    rows.append({
                        "id": _id(), "gameId": game["game_id"], "installDate": day,
                        "dayIndex": day_index, "platform": platform, "countryCode": country,
                        "cohortSize": size, "retainedUsers": users,
                    })
    return rows


# ── Bulk insert helper ───────────────────────────────────

def _bulk_insert(engine, table: str, rows: list[dict], batch_size: int = 2000):
    """Insert rows into *table* in batches using executemany-style VALUES."""
    if not rows:
        return
    cols = list(rows[0].keys())
    col_list = ", ".join(f'"{c}"' for c in cols)
    param_list = ", ".join(f":{c}" for c in cols)
    sql = text(f'INSERT INTO "{table}" ({col_list}) VALUES ({param_list}) ON CONFLICT DO NOTHING')
    with engine.begin() as conn:
        for i in range(0, len(rows), batch_size):
            conn.execute(sql, rows[i : i + batch_size])
    print(f"  ✓ {table}: {len(rows):,} rows")


# ── Main ─────────────────────────────────────────────────

def main():
    print("═══ Telemetry Seed Generator ═══")
    engine = create_engine(_db_url(), echo=False)

    with engine.begin() as conn:
        for ddl in _DDL:
            conn.execute(text(ddl))

    games = gen_games()
    game_ids = [g["game_id"] for g in games]

    print("Clearing previous rows for seeded games …")
    with engine.begin() as conn:
        for table in ["monetization_daily_rollups", "active_users_daily", "cohort_retention_daily"]:
            conn.execute(text(f'DELETE FROM "{table}" WHERE "gameId" = ANY(:ids)'), {"ids": game_ids})

    print("Generating and inserting …")
    for game in games:
        dau_rows, revenue_rows = gen_activity(game)
        _bulk_insert(engine, "active_users_daily", dau_rows)
        _bulk_insert(engine, "monetization_daily_rollups", revenue_rows)
        _bulk_insert(engine, "cohort_retention_daily", gen_cohorts(game))

    print(f"\nDone — seeded {NUM_DAYS} days for games: {', '.join(game_ids)}")


if __name__ == "__main__":
    main()
