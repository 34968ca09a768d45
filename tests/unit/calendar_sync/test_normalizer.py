"""Unit tests for wire <-> internal event conversion."""

from datetime import datetime, timedelta

import pytest

from enrollment.src.calendar_sync.models import CalendarEvent, EventDraft
from enrollment.src.calendar_sync.normalizer import (
    UNTITLED_EVENT,
    can_delete_locally,
    is_provider_managed,
    to_internal,
    to_wire,
)


@pytest.fixture
def all_day_wire():
    """Three-day enrollment week (exclusive end on the wire)."""
    return {
        "id": "evt-enroll-week",
        "summary": "Enrollment Week",
        "start": {"date": "2024-05-01"},
        "end": {"date": "2024-05-04"},
    }


@pytest.fixture
def timed_wire():
    return {
        "id": "evt-interview",
        "summary": "Applicant interview",
        "description": "Bring transcript",
        "location": "Registrar, Room 2",
        "start": {"dateTime": "2024-05-15T09:00:00+08:00", "timeZone": "Asia/Manila"},
        "end": {"dateTime": "2024-05-15T10:30:00+08:00", "timeZone": "Asia/Manila"},
        "attendees": [{"email": "applicant@example.com"}, {"email": "registrar@example.com"}],
    }


class TestToInternal:
    """Wire payload -> CalendarEvent."""

    def test_all_day_end_becomes_inclusive(self, all_day_wire, manila):
        event = to_internal(all_day_wire, tz=manila)

        assert event.all_day is True
        assert event.start == datetime(2024, 5, 1, tzinfo=manila)
        # Exclusive 2024-05-04 -> last included day 2024-05-03
        assert event.end == datetime(2024, 5, 3, tzinfo=manila)

    def test_single_all_day_event_starts_and_ends_same_midnight(self, manila):
        wire = {"id": "x", "summary": "Holiday", "start": {"date": "2024-06-12"}, "end": {"date": "2024-06-13"}}

        event = to_internal(wire, tz=manila)

        assert event.start == event.end == datetime(2024, 6, 12, tzinfo=manila)

    def test_all_day_with_bogus_exclusive_end_is_clamped(self, manila):
        wire = {"id": "x", "summary": "Odd", "start": {"date": "2024-06-12"}, "end": {"date": "2024-06-12"}}

        event = to_internal(wire, tz=manila)

        assert event.end == event.start

    def test_timed_event(self, timed_wire, manila):
        event = to_internal(timed_wire, tz=manila)

        assert event.all_day is False
        assert event.start == datetime(2024, 5, 15, 9, 0, tzinfo=manila)
        assert event.end - event.start == timedelta(minutes=90)
        assert event.location == "Registrar, Room 2"
        assert event.attendees == ["applicant@example.com", "registrar@example.com"]

    def test_utc_z_suffix_is_accepted(self, manila):
        wire = {"id": "z", "start": {"dateTime": "2024-05-15T01:00:00Z"}, "end": {"dateTime": "2024-05-15T02:00:00Z"}}

        event = to_internal(wire, tz=manila)

        assert event.start == datetime(2024, 5, 15, 9, 0, tzinfo=manila)

    def test_missing_end_defaults_to_one_hour(self, manila):
        wire = {"id": "x", "summary": "Walk-in", "start": {"dateTime": "2024-05-15T13:00:00+08:00"}}

        event = to_internal(wire, tz=manila)

        assert event.end - event.start == timedelta(hours=1)

    def test_end_before_start_is_clamped(self, manila):
        wire = {
            "id": "x",
            "start": {"dateTime": "2024-05-15T13:00:00+08:00"},
            "end": {"dateTime": "2024-05-15T12:00:00+08:00"},
        }

        event = to_internal(wire, tz=manila)

        assert event.end == event.start

    def test_unparseable_start_falls_back_to_now(self, manila, fixed_now):
        wire = {"id": "x", "start": {"dateTime": "not-a-date"}}

        event = to_internal(wire, tz=manila, now=fixed_now)

        assert event.start == fixed_now

    def test_title_fallbacks(self, manila):
        base = {"start": {"date": "2024-05-01"}, "end": {"date": "2024-05-02"}, "id": "x"}

        assert to_internal(base, tz=manila).title == UNTITLED_EVENT
        assert to_internal({**base, "title": "Orientation"}, tz=manila).title == "Orientation"
        assert to_internal({**base, "summary": "Advising", "title": "Other"}, tz=manila).title == "Advising"

    def test_missing_id_gets_synthetic_identifier(self, manila):
        wire = {"summary": "No id", "start": {"date": "2024-05-01"}, "end": {"date": "2024-05-02"}}

        first = to_internal(wire, tz=manila)
        second = to_internal(wire, tz=manila)

        assert first.id.startswith("event-")
        assert len(first.id) == len("event-") + 9
        assert first.id != second.id

    def test_mongo_style_id_is_used(self, manila):
        wire = {"_id": "66a1f0", "start": {"date": "2024-05-01"}, "end": {"date": "2024-05-02"}}

        assert to_internal(wire, tz=manila).id == "66a1f0"

    def test_string_attendees_are_accepted(self, manila):
        wire = {
            "id": "x",
            "start": {"date": "2024-05-01"},
            "attendees": ["a@example.com", " ", {"displayName": "no email"}, {"email": "b@example.com"}],
        }

        assert to_internal(wire, tz=manila).attendees == ["a@example.com", "b@example.com"]

    def test_source_ref_keeps_raw_payload(self, timed_wire, manila):
        event = to_internal(timed_wire, tz=manila)

        assert event.source_ref == timed_wire
        assert "source_ref" not in event.model_dump()


class TestToWire:
    """CalendarEvent/EventDraft -> wire body."""

    def test_all_day_end_becomes_exclusive(self, manila):
        draft = EventDraft(
            title="Enrollment Week",
            start=datetime(2024, 5, 1, tzinfo=manila),
            end=datetime(2024, 5, 3, tzinfo=manila),
            all_day=True,
        )

        body = to_wire(draft)

        assert body["start"] == {"date": "2024-05-01"}
        assert body["end"] == {"date": "2024-05-04"}
        assert "dateTime" not in body["start"]

    def test_timed_body_carries_zone(self, manila):
        draft = EventDraft(
            title="Interview",
            start=datetime(2024, 5, 15, 9, tzinfo=manila),
            end=datetime(2024, 5, 15, 10, tzinfo=manila),
        )

        body = to_wire(draft, timezone_name="Asia/Manila")

        assert body["start"] == {"dateTime": "2024-05-15T09:00:00+08:00", "timeZone": "Asia/Manila"}
        assert body["end"]["timeZone"] == "Asia/Manila"

    def test_empty_optional_fields_are_omitted(self, manila):
        draft = EventDraft(
            title="Interview",
            start=datetime(2024, 5, 15, 9, tzinfo=manila),
            end=datetime(2024, 5, 15, 10, tzinfo=manila),
        )

        body = to_wire(draft)

        assert body["summary"] == "Interview"
        assert body["description"] == ""
        assert "location" not in body
        assert "attendees" not in body
        assert "id" not in body

    def test_attendees_become_email_objects(self, manila):
        draft = EventDraft(
            title="Panel",
            start=datetime(2024, 5, 15, 9, tzinfo=manila),
            end=datetime(2024, 5, 15, 10, tzinfo=manila),
            attendees=EventDraft.parse_attendees("a@example.com, b@example.com,"),
        )

        body = to_wire(draft)

        assert body["attendees"] == [{"email": "a@example.com"}, {"email": "b@example.com"}]

    def test_all_day_override(self, manila):
        draft = EventDraft(
            title="Retreat",
            start=datetime(2024, 5, 1, 9, tzinfo=manila),
            end=datetime(2024, 5, 2, 17, tzinfo=manila),
        )

        body = to_wire(draft, all_day=True)

        assert body["start"] == {"date": "2024-05-01"}
        assert body["end"] == {"date": "2024-05-03"}


class TestRoundTrip:
    """to_internal(to_wire(e)) == e for well-formed events."""

    def test_all_day_round_trip(self, all_day_wire, manila):
        event = to_internal(all_day_wire, tz=manila)

        assert to_internal(to_wire(event), tz=manila) == event

    def test_timed_round_trip(self, timed_wire, manila):
        event = to_internal(timed_wire, tz=manila)

        assert to_internal(to_wire(event), tz=manila) == event

    def test_padded_title_round_trip(self, timed_wire, manila):
        event = to_internal({**timed_wire, "summary": "  Applicant interview "}, tz=manila)

        body = to_wire(event)

        assert body["summary"] == "  Applicant interview "
        assert to_internal(body, tz=manila) == event

    def test_blank_title_falls_back(self, manila):
        draft = EventDraft(
            title="   ",
            start=datetime(2024, 5, 15, 9, tzinfo=manila),
            end=datetime(2024, 5, 15, 10, tzinfo=manila),
        )

        assert to_wire(draft)["summary"] == UNTITLED_EVENT


class TestProviderManaged:
    def test_html_link_marks_provider_managed(self, timed_wire, manila):
        managed = to_internal({**timed_wire, "htmlLink": "https://calendar.google.com/event?eid=1"}, tz=manila)
        local = to_internal(timed_wire, tz=manila)

        assert is_provider_managed(managed.source_ref)
        assert managed.provider_managed and not managed.deletable
        assert can_delete_locally(local)
        assert not can_delete_locally({"htmlLink": "https://calendar.google.com/x"})

    def test_all_day_flag_must_match_payload_shape(self, all_day_wire, manila):
        with pytest.raises(ValueError):
            CalendarEvent(
                id="x",
                title="Mismatch",
                start=datetime(2024, 5, 1, tzinfo=manila),
                end=datetime(2024, 5, 1, tzinfo=manila),
                all_day=False,
                source_ref=all_day_wire,
            )

    def test_end_before_start_is_rejected(self, manila):
        with pytest.raises(ValueError):
            CalendarEvent(
                id="x",
                title="Backwards",
                start=datetime(2024, 5, 2, tzinfo=manila),
                end=datetime(2024, 5, 1, tzinfo=manila),
            )

    def test_three_day_scenario_restores_exclusive_end(self, manila):
        wire = {"id": "x", "summary": "Exams", "start": {"date": "2024-05-01"}, "end": {"date": "2024-05-03"}}

        event = to_internal(wire, tz=manila)

        assert event.end == datetime(2024, 5, 2, tzinfo=manila)
        assert to_wire(event)["end"] == {"date": "2024-05-03"}
