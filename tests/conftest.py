"""Shared fixtures for the PRN admin test suites.

Provides a fresh temp-file SQLite DatabaseManager for each test, plus a
small seeded world of users and numbers:

- admin / support / alice (user) / bob (user)
- UK voice number and US sms number owned by alice
- DE combined number owned by bob
- an unowned UK voice number in the pool
"""
import os
import shutil
import tempfile
from datetime import datetime, date
from decimal import Decimal

import pytest

from database import DatabaseManager
from database.permissions import Caller, Role


@pytest.fixture
def temp_db():
    """Yield a fresh DatabaseManager bound to a temp SQLite database."""
    temp_dir = tempfile.mkdtemp(prefix="prn-tests-")
    db_path = os.path.join(temp_dir, "test.db")
    manager = DatabaseManager(database_url=f"sqlite:///{db_path}")
    manager.create_tables()

    try:
        yield manager
    finally:
        manager.close()
        shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def users(temp_db):
    """Create one user per role and return them keyed by username."""
    return {
        "admin": temp_db.users.create_user("admin", "Platform Admin", role="admin"),
        "support": temp_db.users.create_user("support", "Support Desk", role="support"),
        "alice": temp_db.users.create_user(
            "alice", "Alice Carter", payment_method="usdt",
            usdt_address="TXalice"
        ),
        "bob": temp_db.users.create_user(
            "bob", "Bob Mensah", payment_method="bank",
            bank_name="First Bank", bank_account_number="0123",
            bank_routing_number="0210"
        ),
    }


@pytest.fixture
def numbers(temp_db, users):
    """Create numbers across countries and channels."""
    return {
        "uk_voice": temp_db.numbers.create_number({
            "value": "+44 7700 900123", "name": "UK Voice",
            "country_code": "UK", "channel_type": "voice",
            "service_type": "Entertainment", "rate_per_minute": "1.50",
            "owner_id": users["alice"].id,
        }),
        "us_sms": temp_db.numbers.create_number({
            "value": "+1 900 555 0199", "name": "US SMS",
            "country_code": "US", "channel_type": "sms",
            "service_type": "Voting", "rate_per_sms": "0.50",
            "owner_id": users["alice"].id,
        }),
        "de_combined": temp_db.numbers.create_number({
            "value": "+49 900 123 4567", "name": "DE Combined",
            "country_code": "DE", "channel_type": "combined",
            "service_type": "Psychic", "rate_per_minute": "2.00",
            "rate_per_sms": "0.25", "owner_id": users["bob"].id,
        }),
        "pool": temp_db.numbers.create_number({
            "value": "+44 7700 900999", "name": "UK Pool",
            "country_code": "UK", "channel_type": "voice",
            "service_type": "Entertainment", "rate_per_minute": "1.00",
        }),
    }


@pytest.fixture
def admin_caller(users):
    return Caller(users["admin"].id, Role.ADMIN)


@pytest.fixture
def support_caller(users):
    return Caller(users["support"].id, Role.SUPPORT)


@pytest.fixture
def alice_caller(users):
    return Caller(users["alice"].id, Role.USER)


@pytest.fixture
def sample_datetime():
    """Stable datetime value for deterministic tests."""
    return datetime(2024, 1, 10, 12, 0, 0)


@pytest.fixture
def sample_date():
    """Stable date value for deterministic tests."""
    return date(2024, 1, 10)


def record_call(db, number, revenue, when, duration=60, **extra):
    """Helper: record a call with explicit revenue and start time."""
    data = {
        "number_id": number.id,
        "revenue": Decimal(str(revenue)),
        "duration": duration,
        "start_time": when,
        "caller": "+15550001111",
    }
    data.update(extra)
    return db.calls.record(data)


def record_sms(db, number, revenue, when, message="hello", **extra):
    """Helper: record an SMS with explicit revenue and timestamp."""
    data = {
        "number_id": number.id,
        "revenue": Decimal(str(revenue)),
        "timestamp": when,
        "message": message,
        "sender": "+15550002222",
    }
    data.update(extra)
    return db.sms.record(data)
