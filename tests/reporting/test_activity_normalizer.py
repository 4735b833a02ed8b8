"""Activity normalizer tests.

Uses in-memory ORM objects (never persisted) so the ordering rules can be
checked without a database.
"""
from datetime import datetime
from decimal import Decimal

import pytest

from database.models import CallLog, SmsLog
from reporting.activity import (
    CallActivity, SmsActivity, activity_to_dict, from_call_log, normalize
)


def make_call(log_id, when, revenue="1.00", duration=60):
    return CallLog(
        id=log_id, number_id=1, number_value="+44 7700 900123",
        number_name="UK Voice", caller="+15550001111", duration=duration,
        revenue=Decimal(revenue), status="COMPLETED", start_time=when,
        country_code="UK", service_type="Entertainment",
        channel_type="voice", user_id=3,
    )


def make_sms(log_id, when, revenue="0.50", message="hello", length=None):
    return SmsLog(
        id=log_id, number_id=2, number_value="+1 900 555 0199",
        number_name="US SMS", sender="+15550002222", message=message,
        message_length=len(message) if length is None else length,
        revenue=Decimal(revenue), status="RECEIVED", timestamp=when,
        country_code="US", service_type="Voting",
        channel_type="sms", user_id=3,
    )


class TestNormalize:
    """Tests for normalize()."""

    def test_empty_inputs(self):
        assert normalize([], []) == []

    def test_newest_first(self):
        calls = [make_call(1, datetime(2024, 1, 1, 9)), make_call(2, datetime(2024, 1, 3))]
        sms = [make_sms(1, datetime(2024, 1, 2))]
        merged = normalize(calls, sms)
        assert [(a.kind, a.id) for a in merged] == [("call", 2), ("sms", 1), ("call", 1)]

    def test_tie_break_by_id_then_kind(self):
        when = datetime(2024, 1, 1, 12)
        calls = [make_call(5, when), make_call(7, when)]
        sms = [make_sms(5, when), make_sms(6, when)]
        merged = normalize(calls, sms)
        assert [(a.kind, a.id) for a in merged] == [
            ("call", 7), ("sms", 6), ("sms", 5), ("call", 5)
        ]

    def test_order_independent_of_input_order(self):
        when = datetime(2024, 1, 1, 12)
        calls = [make_call(1, when), make_call(2, datetime(2024, 1, 2))]
        sms = [make_sms(1, when), make_sms(3, datetime(2024, 1, 2))]
        forward = normalize(calls, sms)
        backward = normalize(list(reversed(calls)), list(reversed(sms)))
        assert forward == backward

    def test_limit_and_offset(self):
        calls = [make_call(i, datetime(2024, 1, i)) for i in range(1, 6)]
        page = normalize(calls, [], limit=2, offset=1)
        assert [a.id for a in page] == [4, 3]

    def test_length_units_differ(self):
        merged = normalize(
            [make_call(1, datetime(2024, 1, 1), duration=125)],
            [make_sms(1, datetime(2024, 1, 2), message="VOTE 7")],
        )
        sms, call = merged
        assert isinstance(sms, SmsActivity) and sms.length == 6
        assert isinstance(call, CallActivity) and call.length == 125

    def test_accepts_projected_activities(self):
        projected = from_call_log(make_call(1, datetime(2024, 1, 1)))
        assert normalize([projected], []) == [projected]


class TestActivityToDict:
    """Tests for activity_to_dict()."""

    def test_call_shape(self):
        data = activity_to_dict(from_call_log(make_call(1, datetime(2024, 1, 1), "1.235")))
        assert data["kind"] == "call"
        assert data["length_unit"] == "seconds"
        assert data["contact_number"] == "+15550001111"
        assert data["revenue"] == 1.24
        assert data["timestamp"] == "2024-01-01T00:00:00"
        assert "message_content" not in data

    def test_sms_shape(self):
        activity = normalize([], [make_sms(1, datetime(2024, 1, 1), message="hi")])[0]
        data = activity_to_dict(activity)
        assert data["kind"] == "sms"
        assert data["length"] == 2
        assert data["length_unit"] == "characters"
        assert data["message_content"] == "hi"

    def test_unknown_type(self):
        with pytest.raises(TypeError):
            activity_to_dict(object())
