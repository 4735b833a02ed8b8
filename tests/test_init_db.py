"""Seed data tests."""
from config.seed_data import DefaultPRNSeed, SeedConfig
from database.models import Number, Provider, User
from scripts.init_db import seed_database


class EmptySeed(SeedConfig):
    def get_users(self):
        return []

    def get_numbers(self):
        return []

    def get_providers(self):
        return []


class TestSeedDatabase:
    """Tests for seed_database()."""

    def test_seeds_default_data(self, temp_db):
        seed_database(temp_db, DefaultPRNSeed())

        assert temp_db.users.count(User) == 4
        assert temp_db.numbers.count(Number) == 4
        assert temp_db.providers.count(Provider) == 2
        assert temp_db.app_settings.get_value("min_payout_amount") == "10"

        alice = temp_db.users.get_by_username("alice")
        owned = temp_db.numbers.get_owned_by(alice.id)
        assert {n.country_code for n in owned} == {"UK", "US"}
        pool = temp_db.numbers.get_by_value("+49 900 123 4567")
        assert pool.owner_id is None

    def test_is_idempotent(self, temp_db):
        seed_database(temp_db, DefaultPRNSeed())
        seed_database(temp_db, DefaultPRNSeed())

        assert temp_db.users.count(User) == 4
        assert temp_db.numbers.count(Number) == 4
        assert temp_db.providers.count(Provider) == 2

    def test_keeps_existing_users(self, temp_db):
        temp_db.users.create_user("alice", "Alice Existing")
        seed_database(temp_db, DefaultPRNSeed())
        alice = temp_db.users.get_by_username("alice")
        assert alice.full_name == "Alice Existing"

    def test_empty_config(self, temp_db):
        seed_database(temp_db, EmptySeed())
        assert temp_db.users.count(User) == 0
        assert temp_db.app_settings.get_value("min_payout_amount") is None
