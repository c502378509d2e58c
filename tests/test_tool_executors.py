"""Tests for services/tool_executors.py and services/tool_registry.py

Executors are called directly with a ToolContext, the same way the /ai/*
endpoints call them outside the agent loop.
"""

from datetime import timedelta

import pytest

from models.event import AttendanceResponse, RsvpStatus
from schemas.tool_schema import (
    CheckConflictsInput,
    CreateEventInput,
    GetMyScheduleInput,
    SearchEventsInput,
    SuggestMeetingTimeInput,
)
from services import event_service, tool_executors
from services.errors import MalformedResponse, ValidationFailed
from services.time_utils import iso_z
from services.tool_registry import build_default_registry
from conftest import FIXED_NOW


# ─────────────────────────────────────────────────────────────────────────────
# Registry
# ─────────────────────────────────────────────────────────────────────────────


class TestRegistry:
    def test_registers_seven_tools(self):
        registry = build_default_registry()
        assert registry.names() == [
            "search_events", "get_my_schedule", "check_conflicts", "create_event",
            "invite_people", "suggest_meeting_time", "build_agenda",
        ]

    def test_specs_use_camel_case_parameters(self):
        specs = {s["function"]["name"]: s for s in build_default_registry().specs()}
        params = specs["check_conflicts"]["function"]["parameters"]
        assert set(params["required"]) == {"startDateTime", "endDateTime"}
        assert "daysAhead" in specs["get_my_schedule"]["function"]["parameters"]["properties"]

    def test_invalid_arguments_give_field_details(self, ctx):
        registry = build_default_registry()
        with pytest.raises(ValidationFailed) as exc:
            registry.execute("get_my_schedule", {"daysAhead": 500}, ctx)
        assert exc.value.details[0]["field"] == "daysAhead"

    def test_end_before_start_rejected(self, ctx):
        registry = build_default_registry()
        with pytest.raises(ValidationFailed):
            registry.execute("check_conflicts", {
                "startDateTime": "2026-03-11T10:00:00Z",
                "endDateTime": "2026-03-11T09:00:00Z",
            }, ctx)

    def test_unknown_tool(self, ctx):
        with pytest.raises(ValidationFailed):
            build_default_registry().execute("delete_everything", {}, ctx)

    def test_invalid_email_rejected(self, ctx):
        with pytest.raises(ValidationFailed) as exc:
            build_default_registry().execute("invite_people", {"eventId": "x", "emails": ["not-an-email"]}, ctx)
        assert "not-an-email" in exc.value.message

    def test_object_shaped_email_rejected(self, ctx):
        """Only plain strings are accepted; {"email": ...} objects fail type validation."""
        with pytest.raises(ValidationFailed) as exc:
            build_default_registry().execute(
                "invite_people", {"eventId": "x", "emails": [{"email": "bob@example.com"}]}, ctx,
            )
        assert exc.value.details[0]["field"] == "emails.0"


# ─────────────────────────────────────────────────────────────────────────────
# search_events
# ─────────────────────────────────────────────────────────────────────────────


class TestSearchEvents:
    def test_keyword_is_case_insensitive(self, ctx, alice, make_event):
        make_event(alice, title="Python Meetup")
        make_event(alice, title="Board review", hours=30)
        out = tool_executors.search_events(ctx, SearchEventsInput(keyword="python"))
        assert [e["title"] for e in out["events"]] == ["Python Meetup"]

    def test_keyword_matches_description(self, ctx, alice, make_event):
        make_event(alice, title="Evening talk", description="All about GraphQL")
        out = tool_executors.search_events(ctx, SearchEventsInput(keyword="graphql"))
        assert out["count"] == 1

    def test_tags_filter(self, ctx, alice, make_event):
        make_event(alice, title="A", tags=["AI", "talk"])
        make_event(alice, title="B", tags=["social"], hours=26)
        out = tool_executors.search_events(ctx, SearchEventsInput(tags=["ai"]))
        assert [e["title"] for e in out["events"]] == ["A"]

    def test_upcoming_excludes_past(self, ctx, alice, make_event):
        make_event(alice, title="Past", hours=-48)
        make_event(alice, title="Future", hours=48)
        assert [e["title"] for e in tool_executors.search_events(ctx, SearchEventsInput())["events"]] == ["Future"]
        past = tool_executors.search_events(ctx, SearchEventsInput(scope="past"))
        assert [e["title"] for e in past["events"]] == ["Past"]

    def test_private_events_of_others_hidden(self, make_ctx, alice, bob, make_event):
        make_event(bob, title="Bob private", is_public=False)
        make_event(bob, title="Bob public", hours=30)
        out = tool_executors.search_events(make_ctx(alice), SearchEventsInput(scope="all"))
        assert [e["title"] for e in out["events"]] == ["Bob public"]

    def test_page_size(self, ctx, alice, make_event):
        for i in range(25):
            make_event(alice, title=f"Event {i}", hours=24 + i)
        out = tool_executors.search_events(ctx, SearchEventsInput())
        assert out["count"] == tool_executors.SEARCH_PAGE_SIZE
        starts = [e["startDateTime"] for e in out["events"]]
        assert starts == sorted(starts)


# ─────────────────────────────────────────────────────────────────────────────
# get_my_schedule / check_conflicts
# ─────────────────────────────────────────────────────────────────────────────


class TestSchedule:
    def test_returns_committed_events_in_window(self, db, ctx, alice, bob, make_event):
        mine = make_event(alice, title="Mine", hours=48)
        theirs = make_event(bob, title="Theirs", hours=24)
        event_service.set_rsvp(db, theirs, alice.subject_id, RsvpStatus.ATTENDING, FIXED_NOW)
        maybe = make_event(bob, title="Maybe", hours=30)
        event_service.set_rsvp(db, maybe, alice.subject_id, RsvpStatus.MAYBE, FIXED_NOW)
        make_event(alice, title="Too far", hours=24 * 10)

        out = tool_executors.get_my_schedule(ctx, GetMyScheduleInput(daysAhead=7))
        assert [(s["title"], s["myStatus"]) for s in out["schedule"]] == [
            ("Theirs", "ATTENDING"),
            ("Mine", "UPCOMING"),
        ]
        assert out["schedule"][1]["eventId"] == mine.id

    def test_many_events_fetched_in_parallel_chunks(self, ctx, alice, make_event):
        for i in range(23):
            make_event(alice, title=f"E{i:02d}", hours=1 + i)
        out = tool_executors.get_my_schedule(ctx, GetMyScheduleInput())
        assert [s["title"] for s in out["schedule"]] == [f"E{i:02d}" for i in range(23)]


class TestCheckConflicts:
    def test_reports_overlap_minutes(self, ctx, alice, make_event):
        ev = make_event(alice, title="Design review", hours=5, minutes=60)
        out = tool_executors.check_conflicts(ctx, CheckConflictsInput(
            startDateTime=ev.start + timedelta(minutes=30),
            endDateTime=ev.start + timedelta(minutes=90),
        ))
        assert out["hasConflict"] is True
        assert out["conflicts"] == [{
            "eventId": ev.id,
            "title": "Design review",
            "startDateTime": iso_z(ev.start),
            "endDateTime": iso_z(ev.end),
            "overlapMinutes": 30,
        }]

    def test_back_to_back_is_free(self, ctx, alice, make_event):
        ev = make_event(alice, hours=5, minutes=60)
        out = tool_executors.check_conflicts(ctx, CheckConflictsInput(
            startDateTime=ev.end, endDateTime=ev.end + timedelta(minutes=30),
        ))
        assert out == {"hasConflict": False, "conflicts": []}

    def test_declined_events_do_not_conflict(self, db, ctx, alice, bob, make_event):
        ev = make_event(bob, hours=5)
        event_service.set_rsvp(db, ev, alice.subject_id, RsvpStatus.DECLINED, FIXED_NOW)
        out = tool_executors.check_conflicts(ctx, CheckConflictsInput(startDateTime=ev.start, endDateTime=ev.end))
        assert out["hasConflict"] is False

    def test_resolutions_requested_only_with_conflicts(self, ctx, completion, alice, make_event):
        assert tool_executors.suggest_conflict_resolutions(ctx, FIXED_NOW, FIXED_NOW + timedelta(hours=1), []) == []
        assert completion.json_calls == []

        ev = make_event(alice, hours=2)
        completion.json_replies.append({"resolutions": [{
            "type": "reschedule",
            "description": "Move it an hour later",
            "suggestedTime": {"start": "2026-03-10T12:00:00Z", "end": "2026-03-10T13:00:00Z"},
            "reasoning": "Free afterwards",
        }]})
        conflicts = tool_executors.find_conflicts(ctx, ev.start, ev.end)
        out = tool_executors.suggest_conflict_resolutions(ctx, ev.start, ev.end, conflicts, "Lunch")
        assert out[0]["type"] == "reschedule"
        assert out[0]["suggestedTime"]["start"] == "2026-03-10T12:00:00Z"
        assert completion.json_calls[0]["user"]["newEvent"]["title"] == "Lunch"


# ─────────────────────────────────────────────────────────────────────────────
# create_event
# ─────────────────────────────────────────────────────────────────────────────


class TestCreateEvent:
    def test_creator_registered_as_upcoming(self, db, ctx, alice):
        start = FIXED_NOW + timedelta(days=1)
        out = tool_executors.create_event(ctx, CreateEventInput(
            title="  Launch party ", startDateTime=start, endDateTime=start + timedelta(hours=2),
        ))
        assert out["title"] == "Launch party"
        assert out["startDateTime"] == iso_z(start)

        resp = db.query(AttendanceResponse).filter_by(event_id=out["eventId"]).one()
        assert resp.user_id == alice.subject_id
        assert resp.status == RsvpStatus.UPCOMING.value
        assert resp.event_start == start

    def test_timezone_offsets_are_normalized_to_utc(self, ctx):
        payload = CreateEventInput.model_validate({
            "title": "Call",
            "startDateTime": "2026-03-11T14:00:00+09:00",
            "endDateTime": "2026-03-11T15:00:00+09:00",
        })
        out = tool_executors.create_event(ctx, payload)
        assert out["startDateTime"] == "2026-03-11T05:00:00Z"


# ─────────────────────────────────────────────────────────────────────────────
# suggest_meeting_time
# ─────────────────────────────────────────────────────────────────────────────


class TestSuggestMeetingTime:
    def _input(self, *ids, hours=8):
        return SuggestMeetingTimeInput.model_validate({
            "attendeeIds": list(ids),
            "dateRange": {"from": iso_z(FIXED_NOW), "to": iso_z(FIXED_NOW + timedelta(hours=hours))},
            "durationMinutes": 60,
        })

    def test_breakdown_computed_from_busy_slots(self, ctx, completion, alice, bob, make_event):
        busy = make_event(bob, hours=1, minutes=60)  # 10:00-11:00
        completion.json_replies.append({"suggestions": [
            {"startDateTime": "2026-03-10T10:30:00Z", "endDateTime": "2026-03-10T11:30:00Z",
             "score": 0.99, "reason": "Model thinks everyone is free"},
            {"startDateTime": "2026-03-10T13:00:00Z", "endDateTime": "2026-03-10T14:00:00Z",
             "score": 0.9, "reason": "After lunch"},
        ]})

        out = tool_executors.suggest_meeting_time(ctx, self._input(alice.subject_id, bob.subject_id))

        first, second = out["suggestions"]
        assert first["startDateTime"] == "2026-03-10T13:00:00Z"
        assert first["availableAttendees"] == [alice.subject_id, bob.subject_id]
        assert first["score"] == 0.9
        assert second["conflictedAttendees"] == [bob.subject_id]
        assert second["score"] == 0.5
        busy_sent = completion.json_calls[0]["user"]["attendeeBusySlots"]
        assert busy_sent[alice.subject_id] == []
        assert busy_sent[bob.subject_id][0]["start"] == iso_z(busy.start)

    def test_score_clamped_and_length_fixed(self, ctx, completion, alice):
        completion.json_replies.append({"suggestions": [
            {"startDateTime": "2026-03-10T12:00:00Z", "endDateTime": "2026-03-10T15:00:00Z", "score": 7},
        ]})
        out = tool_executors.suggest_meeting_time(ctx, self._input(alice.subject_id))
        s = out["suggestions"][0]
        assert s["score"] == 1.0
        assert s["endDateTime"] == "2026-03-10T13:00:00Z"

    def test_at_most_three_and_out_of_range_dropped(self, ctx, completion, alice):
        completion.json_replies.append({"suggestions": [
            {"startDateTime": f"2026-03-10T{h:02d}:00:00Z", "endDateTime": "x", "score": 0.5}
            for h in (10, 11, 12, 13)
        ] + [{"startDateTime": "2026-03-20T10:00:00Z", "endDateTime": "x", "score": 1}]})
        out = tool_executors.suggest_meeting_time(ctx, self._input(alice.subject_id))
        assert len(out["suggestions"]) == 3
        assert all(s["startDateTime"].startswith("2026-03-10") for s in out["suggestions"])

    def test_no_usable_slot_is_malformed(self, ctx, completion, alice):
        completion.json_replies.append({"suggestions": [{"startDateTime": "garbage", "endDateTime": "x"}]})
        with pytest.raises(MalformedResponse):
            tool_executors.suggest_meeting_time(ctx, self._input(alice.subject_id))
