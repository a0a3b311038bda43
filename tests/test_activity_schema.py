from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest
from pydantic import ValidationError

from crm_activity.core.timestamps import (
    AbsoluteTimestamp,
    LocalTimestamp,
    format_local,
    parse_timestamp,
)
from crm_activity.schemas.activity import Activity, ActivityPage
from crm_activity.schemas.common import ActivityKind
from crm_activity.schemas.filters import ScopeInterval, UserContext

DUBAI = ZoneInfo("Asia/Dubai")


class TestTimestampTagging:
    """Untagged values are wall-clock local; tagged values are instants."""

    @pytest.mark.parametrize(
        "raw",
        ["2025-10-13 12:15:00", "2025-10-13T12:15", "2025-10-13T12:15:00.250"],
    )
    def test_untagged_is_local(self, raw):
        ts = parse_timestamp(raw)
        assert isinstance(ts, LocalTimestamp)
        assert ts.to_local(DUBAI).replace(microsecond=0) == datetime(2025, 10, 13, 12, 15)

    def test_date_only_is_local_midnight(self):
        assert parse_timestamp("2025-10-13").to_local() == datetime(2025, 10, 13)

    @pytest.mark.parametrize("raw", ["2025-10-13T08:15:00Z", "2025-10-13T12:15:00+04:00"])
    def test_tagged_converts_to_local_zone(self, raw):
        ts = parse_timestamp(raw)
        assert isinstance(ts, AbsoluteTimestamp)
        assert ts.to_local(DUBAI) == datetime(2025, 10, 13, 12, 15)

    @pytest.mark.parametrize(
        "raw",
        ["2025-10-13T12:15:00+0400", "2025-10-13 08:15:00z", "2025-10-13T09:15:00+0100"],
    )
    def test_compact_offsets_are_accepted(self, raw):
        assert parse_timestamp(raw).to_local(DUBAI) == datetime(2025, 10, 13, 12, 15)

    @pytest.mark.parametrize(
        "raw, micro",
        [
            ("2025-10-13T08:15:00.5Z", 500000),
            ("2025-10-13T08:15:00.12345+00:00", 123450),
            ("2025-10-13T08:15:00.1234567-0000", 123456),
        ],
    )
    def test_any_fraction_length_is_accepted(self, raw, micro):
        ts = parse_timestamp(raw)
        assert isinstance(ts, AbsoluteTimestamp)
        assert ts.value.microsecond == micro
        assert ts.to_local(DUBAI).replace(microsecond=0) == datetime(2025, 10, 13, 12, 15)

    def test_local_is_never_shifted(self):
        ts = parse_timestamp("2025-10-13 23:30:00")
        assert ts.to_local(ZoneInfo("Pacific/Auckland")) == datetime(2025, 10, 13, 23, 30)

    def test_datetime_inputs_are_tagged_by_tzinfo(self):
        assert isinstance(parse_timestamp(datetime(2025, 1, 1)), LocalTimestamp)
        assert isinstance(
            parse_timestamp(datetime(2025, 1, 1, tzinfo=timezone.utc)), AbsoluteTimestamp
        )

    @pytest.mark.parametrize("raw", ["", "   ", "yesterday", "2025-13-45 99:00"])
    def test_garbage_is_rejected(self, raw):
        with pytest.raises(ValueError):
            parse_timestamp(raw)

    def test_wire_format_is_local_without_offset(self):
        assert format_local(datetime(2025, 10, 15, 23, 59, 59, 999999)) == "2025-10-15 23:59:59"

    def test_wire_format_rejects_aware_values(self):
        with pytest.raises(ValueError):
            format_local(datetime(2025, 10, 15, tzinfo=timezone(timedelta(hours=4))))


class TestActivityModel:
    def test_accepts_upstream_aliases(self):
        activity = Activity.model_validate(
            {
                "id": 42,
                "type": "call",
                "due_ts": "2025-10-15 09:00:00",
                "status": "pending",
                "subject": "Follow up",
                "assigned_to": "Sara",
                "assignedToUserId": 9,
                "clientName": "Acme",
            }
        )
        assert activity.id == "42"
        assert activity.kind == ActivityKind.CALL
        assert activity.status == "PENDING"
        assert activity.title == "Follow up"
        assert activity.assignee == "Sara"
        assert activity.assigned_to_user_id == "9"
        assert activity.client_name == "Acme"
        assert activity.is_reminder

    def test_meeting_uses_starts_at(self):
        meeting = Activity.model_validate(
            {"id": "m1", "kind": "MEETING", "starts_at": "2025-10-15T10:00:00Z", "status": "SCHEDULED"}
        )
        assert not meeting.is_reminder
        assert meeting.local_when(DUBAI) == datetime(2025, 10, 15, 14, 0)

    @pytest.mark.parametrize(
        "kind,status",
        [("CALL", "SCHEDULED"), ("EMAIL", "NO_SHOW"), ("MEETING", "SENT")],
    )
    def test_status_must_match_kind(self, kind, status):
        with pytest.raises(ValidationError):
            Activity.model_validate(
                {"id": "1", "kind": kind, "when": "2025-10-15 10:00", "status": status}
            )

    def test_id_is_required(self):
        with pytest.raises(ValidationError):
            Activity.model_validate(
                {"id": "", "kind": "CALL", "when": "2025-10-15 10:00", "status": "PENDING"}
            )

    def test_activity_is_immutable(self):
        activity = Activity.model_validate(
            {"id": "1", "kind": "CALL", "when": "2025-10-15 10:00", "status": "PENDING"}
        )
        with pytest.raises(ValidationError):
            activity.status = "DONE"

    def test_serialises_when_back_to_wire_text(self):
        activity = Activity.model_validate(
            {"id": "1", "kind": "EMAIL", "when": "2025-10-15 10:00", "status": "SENT"}
        )
        assert activity.model_dump()["when"] == "2025-10-15 10:00:00"

    def test_page_envelope(self):
        page = ActivityPage.model_validate({"items": [], "total": 0})
        assert page.items == []


class TestContextModels:
    def test_user_role_is_normalised(self):
        user = UserContext.model_validate({"id": 3, "role": "admin"})
        assert user.id == "3"
        assert user.role.value == "ADMIN"

    def test_scope_interval_must_be_ordered(self):
        with pytest.raises(ValidationError):
            ScopeInterval(from_=datetime(2025, 10, 2), to=datetime(2025, 10, 1))

    def test_scope_interval_must_be_naive(self):
        with pytest.raises(ValidationError):
            ScopeInterval(
                from_=datetime(2025, 10, 1, tzinfo=timezone.utc),
                to=datetime(2025, 10, 2, tzinfo=timezone.utc),
            )
