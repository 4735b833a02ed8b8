"""Activity repository tests.

- CallLogRepository / SmsLogRepository: recording, revenue defaults,
  denormalized fields, balance credit, range queries
- UserMessageRepository: CDIR lifecycle and scoping
- NumberRequestRepository: lifecycle, permissions, fulfilment
"""
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from database.errors import (
    InvalidTransition, NotFound, PermissionDenied, ValidationError
)
from database.models import Number, User
from tests.conftest import record_call, record_sms


def _balance(db, user_id):
    return db.users.get_by_id(User, user_id).balance


# ============================================================
# Call / SMS recording
# ============================================================
class TestCallLogRepository:
    """Tests for CallLogRepository."""

    def test_record_copies_number_fields(self, temp_db, users, numbers,
                                         sample_datetime):
        log = record_call(temp_db, numbers["uk_voice"], "3.25", sample_datetime)
        assert log.country_code == "UK"
        assert log.service_type == "Entertainment"
        assert log.channel_type == "voice"
        assert log.user_id == users["alice"].id
        assert log.number_value == "+44 7700 900123"
        assert log.revenue == Decimal("3.25")

    def test_record_credits_owner(self, temp_db, users, numbers, sample_datetime):
        record_call(temp_db, numbers["uk_voice"], "3.25", sample_datetime)
        record_call(temp_db, numbers["uk_voice"], "1.75", sample_datetime)
        assert _balance(temp_db, users["alice"].id) == Decimal("5.00")

    def test_revenue_defaults_to_rate(self, temp_db, numbers, sample_datetime):
        log = temp_db.calls.record({
            "number_id": numbers["uk_voice"].id,
            "duration": 90,
            "start_time": sample_datetime,
        })
        # 1.50 per minute * 90 seconds
        assert log.revenue == Decimal("2.25")

    def test_record_by_number_value(self, temp_db, numbers, sample_datetime):
        log = temp_db.calls.record({
            "number_value": "+49 900 123 4567", "duration": 30,
            "start_time": sample_datetime,
        })
        assert log.number_id == numbers["de_combined"].id

    def test_unowned_number_credits_nobody(self, temp_db, users, numbers,
                                           sample_datetime):
        log = record_call(temp_db, numbers["pool"], "9.00", sample_datetime)
        assert log.user_id is None
        assert _balance(temp_db, users["alice"].id) == Decimal("0")

    def test_owner_is_captured_at_event_time(self, temp_db, users, numbers,
                                             sample_datetime):
        log = record_call(temp_db, numbers["uk_voice"], "1.00", sample_datetime)
        temp_db.numbers.update_by_id(
            Number, numbers["uk_voice"].id, owner_id=users["bob"].id
        )
        stored = temp_db.calls.query_range()[0]
        assert stored.id == log.id
        assert stored.user_id == users["alice"].id

    def test_unknown_number(self, temp_db):
        with pytest.raises(NotFound):
            temp_db.calls.record({"number_id": 99999, "duration": 10})

    def test_missing_number_reference(self, temp_db):
        with pytest.raises(ValidationError):
            temp_db.calls.record({"duration": 10})

    def test_negative_duration_rejected(self, temp_db, numbers):
        with pytest.raises(ValidationError):
            temp_db.calls.record({"number_id": numbers["uk_voice"].id, "duration": -1})

    def test_negative_revenue_rejected(self, temp_db, numbers):
        with pytest.raises(ValidationError):
            temp_db.calls.record({
                "number_id": numbers["uk_voice"].id, "revenue": "-1"
            })

    def test_query_range_end_exclusive(self, temp_db, numbers, sample_datetime):
        record_call(temp_db, numbers["uk_voice"], "1", sample_datetime)
        record_call(temp_db, numbers["uk_voice"], "1",
                    sample_datetime + timedelta(days=1))
        start = datetime(2024, 1, 10)
        end = datetime(2024, 1, 11)
        logs = temp_db.calls.query_range(start=start, end=end)
        assert len(logs) == 1

    def test_query_range_filters(self, temp_db, users, numbers, sample_datetime):
        record_call(temp_db, numbers["uk_voice"], "1", sample_datetime)
        record_call(temp_db, numbers["de_combined"], "2", sample_datetime)
        assert len(temp_db.calls.query_range(country="de")) == 1
        assert len(temp_db.calls.query_range(service_type="Entertainment")) == 1
        assert len(temp_db.calls.query_range(user_id=users["bob"].id)) == 1

    def test_total_seconds(self, temp_db, users, numbers, sample_datetime):
        record_call(temp_db, numbers["uk_voice"], "1", sample_datetime, duration=45)
        record_call(temp_db, numbers["uk_voice"], "1", sample_datetime, duration=30)
        assert temp_db.calls.total_seconds(user_id=users["alice"].id) == 75


class TestSmsLogRepository:
    """Tests for SmsLogRepository."""

    def test_length_defaults_to_message_length(self, temp_db, numbers,
                                               sample_datetime):
        log = record_sms(temp_db, numbers["us_sms"], "0.50", sample_datetime,
                         message="VOTE 7")
        assert log.message_length == 6

    def test_revenue_defaults_to_rate(self, temp_db, users, numbers,
                                      sample_datetime):
        log = temp_db.sms.record({
            "number_id": numbers["us_sms"].id, "message": "hi",
            "timestamp": sample_datetime,
        })
        assert log.revenue == Decimal("0.50")
        assert _balance(temp_db, users["alice"].id) == Decimal("0.50")

    def test_explicit_length(self, temp_db, numbers, sample_datetime):
        log = record_sms(temp_db, numbers["us_sms"], "0.50", sample_datetime,
                         message="abc", message_length=160)
        assert log.message_length == 160

    def test_many_small_amounts_sum_exactly(self, temp_db, users, numbers,
                                            sample_datetime):
        for _ in range(10):
            record_sms(temp_db, numbers["us_sms"], "0.1", sample_datetime)
        assert _balance(temp_db, users["alice"].id) == Decimal("1")


# ============================================================
# UserMessageRepository Tests
# ============================================================
class TestUserMessageRepository:
    """Tests for the CDIR message lifecycle."""

    def test_create_message(self, temp_db, numbers):
        msg = temp_db.messages.create_message(
            numbers["uk_voice"].id, "Call me back", sender_number="+4411"
        )
        assert msg.status == "pending"
        assert msg.is_read is False

    def test_create_requires_text(self, temp_db, numbers):
        with pytest.raises(ValidationError):
            temp_db.messages.create_message(numbers["uk_voice"].id, "")

    def test_create_unknown_number(self, temp_db):
        with pytest.raises(NotFound):
            temp_db.messages.create_message(99999, "hello")

    def test_respond_marks_read(self, temp_db, numbers):
        msg = temp_db.messages.create_message(numbers["uk_voice"].id, "hello")
        responded = temp_db.messages.respond(msg.id, "Thanks")
        assert responded.status == "responded"
        assert responded.response_text == "Thanks"
        assert responded.responded_at is not None
        assert responded.is_read is True

    def test_responded_cannot_be_archived(self, temp_db, numbers):
        msg = temp_db.messages.create_message(numbers["uk_voice"].id, "hello")
        temp_db.messages.respond(msg.id, "Thanks")
        with pytest.raises(InvalidTransition):
            temp_db.messages.archive(msg.id)

    def test_reset_keeps_read_flag(self, temp_db, numbers):
        msg = temp_db.messages.create_message(numbers["uk_voice"].id, "hello")
        temp_db.messages.respond(msg.id, "Thanks")
        reset = temp_db.messages.reset(msg.id)
        assert reset.status == "pending"
        assert reset.is_read is True
        archived = temp_db.messages.archive(msg.id)
        assert archived.status == "archived"

    def test_mark_read_is_monotonic(self, temp_db, numbers):
        msg = temp_db.messages.create_message(numbers["uk_voice"].id, "hello")
        temp_db.messages.mark_read(msg.id)
        again = temp_db.messages.mark_read(msg.id)
        assert again.is_read is True

    def test_history_scoped_and_ordered(self, temp_db, users, numbers,
                                        sample_datetime):
        older = temp_db.messages.create_message(
            numbers["uk_voice"].id, "first", timestamp=sample_datetime
        )
        newer = temp_db.messages.create_message(
            numbers["us_sms"].id, "second",
            timestamp=sample_datetime + timedelta(hours=1)
        )
        temp_db.messages.create_message(numbers["de_combined"].id, "bob's")

        history = temp_db.messages.list_history(user_id=users["alice"].id)
        assert [m.id for m in history] == [newer.id, older.id]
        assert len(temp_db.messages.list_history()) == 3

    def test_history_status_filter(self, temp_db, numbers):
        msg = temp_db.messages.create_message(numbers["uk_voice"].id, "hello")
        temp_db.messages.create_message(numbers["uk_voice"].id, "other")
        temp_db.messages.archive(msg.id)
        archived = temp_db.messages.list_history(status="archived")
        assert [m.id for m in archived] == [msg.id]
        with pytest.raises(ValidationError):
            temp_db.messages.list_history(status="deleted")

    def test_unread_count(self, temp_db, users, numbers):
        first = temp_db.messages.create_message(numbers["uk_voice"].id, "a")
        temp_db.messages.create_message(numbers["us_sms"].id, "b")
        temp_db.messages.create_message(numbers["de_combined"].id, "c")
        temp_db.messages.mark_read(first.id)
        assert temp_db.messages.unread_count(user_id=users["alice"].id) == 1
        assert temp_db.messages.unread_count() == 2


# ============================================================
# NumberRequestRepository Tests
# ============================================================
class TestNumberRequestRepository:
    """Tests for number request lifecycle and fulfilment."""

    def test_create_request(self, temp_db, users):
        request = temp_db.number_requests.create_request(
            users["alice"].id, "uk", "Entertainment", quantity=2
        )
        assert request.status == "pending"
        assert request.country == "UK"
        assert request.assigned_numbers == []

    def test_quantity_must_be_positive(self, temp_db, users):
        with pytest.raises(ValidationError):
            temp_db.number_requests.create_request(
                users["alice"].id, "UK", "Entertainment", quantity=0
            )

    def test_user_cannot_advance(self, temp_db, users, alice_caller):
        request = temp_db.number_requests.create_request(
            users["alice"].id, "UK", "Entertainment"
        )
        with pytest.raises(PermissionDenied):
            temp_db.number_requests.advance(request.id, "approved", alice_caller)

    def test_support_can_approve(self, temp_db, users, support_caller):
        request = temp_db.number_requests.create_request(
            users["alice"].id, "UK", "Entertainment"
        )
        approved = temp_db.number_requests.advance(
            request.id, "approved", support_caller, notes="ok"
        )
        assert approved.status == "approved"
        assert approved.notes == "ok"
        assert approved.updated_at is not None

    def test_rejected_cannot_be_fulfilled(self, temp_db, users, numbers,
                                          admin_caller):
        request = temp_db.number_requests.create_request(
            users["alice"].id, "UK", "Entertainment"
        )
        temp_db.number_requests.advance(request.id, "rejected", admin_caller)
        with pytest.raises(InvalidTransition):
            temp_db.number_requests.advance(
                request.id, "fulfilled", admin_caller,
                assigned_number_ids=[numbers["pool"].id]
            )

    def test_fulfil_assigns_numbers(self, temp_db, users, numbers, admin_caller):
        request = temp_db.number_requests.create_request(
            users["bob"].id, "UK", "Entertainment"
        )
        temp_db.number_requests.advance(request.id, "approved", admin_caller)
        fulfilled = temp_db.number_requests.advance(
            request.id, "fulfilled", admin_caller,
            assigned_number_ids=[numbers["pool"].id]
        )
        assert fulfilled.status == "fulfilled"
        assert fulfilled.assigned_numbers == [numbers["pool"].id]
        pool = temp_db.numbers.get_by_id(Number, numbers["pool"].id)
        assert pool.owner_id == users["bob"].id

    def test_fulfil_requires_exact_quantity(self, temp_db, users, numbers,
                                            admin_caller):
        request = temp_db.number_requests.create_request(
            users["bob"].id, "UK", "Entertainment", quantity=2
        )
        temp_db.number_requests.advance(request.id, "approved", admin_caller)
        with pytest.raises(ValidationError):
            temp_db.number_requests.advance(
                request.id, "fulfilled", admin_caller,
                assigned_number_ids=[numbers["pool"].id, numbers["pool"].id]
            )

    def test_fulfil_rejects_owned_number(self, temp_db, users, numbers,
                                         admin_caller):
        request = temp_db.number_requests.create_request(
            users["bob"].id, "UK", "Entertainment"
        )
        temp_db.number_requests.advance(request.id, "approved", admin_caller)
        with pytest.raises(ValidationError):
            temp_db.number_requests.advance(
                request.id, "fulfilled", admin_caller,
                assigned_number_ids=[numbers["uk_voice"].id]
            )
        # nothing changed
        stored = temp_db.number_requests.list_requests(user_id=users["bob"].id)[0]
        assert stored.status == "approved"

    def test_list_requests_scoped(self, temp_db, users):
        temp_db.number_requests.create_request(users["alice"].id, "UK", "A")
        temp_db.number_requests.create_request(users["bob"].id, "US", "B")
        assert len(temp_db.number_requests.list_requests()) == 2
        mine = temp_db.number_requests.list_requests(user_id=users["alice"].id)
        assert [r.country for r in mine] == ["UK"]
