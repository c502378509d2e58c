"""Tests for services/agent.py

The completion client is scripted, so each test spells out exactly what the
model "decides" at every reasoning step.
"""

import json
from datetime import timedelta

import pytest

from models.event import Event
from services.agent import STATUS_ABORTED, STATUS_DONE, AgentLoop, AssistantService
from services.conversation_store import InMemoryConversationStore
from services.errors import MalformedResponse, RateLimited, UpstreamUnavailable
from services.rate_limiter import InMemoryRateLimitStore, RateLimiter
from services.tool_registry import build_default_registry
from conftest import FIXED_NOW, FakeCompletion, final, tool_call


@pytest.fixture
def registry():
    return build_default_registry()


def make_service(completion, registry, store=None, max_iterations=8):
    loop = AgentLoop(completion, registry, max_iterations=max_iterations)
    limiter = RateLimiter(InMemoryRateLimitStore(), clock=lambda: 0.0)
    return AssistantService(loop, store or InMemoryConversationStore(), limiter)


def last_tool_output(messages):
    return json.loads([m for m in messages if m["role"] == "tool"][-1]["content"])


# ─────────────────────────────────────────────────────────────────────────────
# Loop mechanics
# ─────────────────────────────────────────────────────────────────────────────


class TestLoop:
    def test_plain_answer_without_tools(self, make_ctx, alice, registry):
        completion = FakeCompletion([final("Hello! How can I help?")])
        result = AgentLoop(completion, registry).run(make_ctx(alice, completion=completion), "hi")
        assert result.status == STATUS_DONE
        assert result.reply == "Hello! How can I help?"
        assert result.tools_used == []

    def test_system_prompt_carries_time_and_user(self, make_ctx, alice, registry):
        completion = FakeCompletion([final("ok")])
        AgentLoop(completion, registry).run(make_ctx(alice, completion=completion), "hi")
        system = completion.chat_calls[0]["messages"][0]
        assert system["role"] == "system"
        assert "2026-03-10T09:00:00Z" in system["content"]
        assert alice.subject_id in system["content"]
        assert len(completion.chat_calls[0]["tools"]) == 7

    def test_history_window_applied(self, make_ctx, alice, registry):
        completion = FakeCompletion([final("ok")])
        history = [{"role": "user" if i % 2 == 0 else "assistant", "content": f"m{i}"} for i in range(14)]
        AgentLoop(completion, registry, history_window=4).run(make_ctx(alice, completion=completion), "now", history)
        sent = completion.chat_calls[0]["messages"]
        assert [m["content"] for m in sent[1:]] == ["m10", "m11", "m12", "m13", "now"]

    def test_tool_result_fed_back(self, make_ctx, alice, make_event, registry):
        make_event(alice, title="Roadmap review")
        completion = FakeCompletion([
            tool_call("search_events", {"keyword": "roadmap"}),
            final("You have a roadmap review tomorrow."),
        ])
        result = AgentLoop(completion, registry).run(make_ctx(alice, completion=completion), "what's on?")

        second = completion.chat_calls[1]["messages"]
        assert second[-2]["tool_calls"][0]["function"]["name"] == "search_events"
        assert second[-1]["role"] == "tool"
        assert second[-1]["tool_call_id"] == "call_1"
        assert last_tool_output(second)["events"][0]["title"] == "Roadmap review"
        assert result.tools_used == ["search_events"]
        assert result.tool_trace[0].ok is True

    def test_tool_error_becomes_tool_result(self, make_ctx, alice, registry):
        completion = FakeCompletion([
            tool_call("invite_people", {"eventId": "missing", "emails": ["x@example.com"]}),
            final("I couldn't find that event."),
        ])
        result = AgentLoop(completion, registry).run(make_ctx(alice, completion=completion), "invite x")

        fed_back = last_tool_output(completion.chat_calls[1]["messages"])
        assert fed_back["error"] == "not_found"
        assert result.status == STATUS_DONE
        assert result.tool_trace[0].ok is False
        assert result.affected_event_ids == []

    def test_invalid_arguments_fed_back_with_details(self, make_ctx, alice, registry):
        completion = FakeCompletion([
            tool_call("get_my_schedule", {"daysAhead": 365}),
            final("Let me look at the next 90 days instead."),
        ])
        AgentLoop(completion, registry).run(make_ctx(alice, completion=completion), "my year")
        fed_back = last_tool_output(completion.chat_calls[1]["messages"])
        assert fed_back["error"] == "validation_failed"
        assert fed_back["details"][0]["field"] == "daysAhead"

    def test_truncated_arguments_repaired(self, make_ctx, alice, registry):
        completion = FakeCompletion([
            tool_call("get_my_schedule", '{"daysAhead": 7'),
            final("Here is your week."),
        ])
        result = AgentLoop(completion, registry).run(make_ctx(alice, completion=completion), "week")
        assert result.tool_trace[0].ok is True
        assert result.tool_trace[0].input == {"daysAhead": 7}

    def test_tool_output_truncated_in_trace(self, make_ctx, alice, make_event, registry):
        for i in range(10):
            make_event(alice, title=f"A rather long event title number {i}", hours=24 + i)
        completion = FakeCompletion([tool_call("search_events", {}), final("Found ten.")])
        result = AgentLoop(completion, registry).run(make_ctx(alice, completion=completion), "list")
        assert len(result.tool_trace[0].output) == 500
        # the model still sees the full output
        assert last_tool_output(completion.chat_calls[1]["messages"])["count"] == 10


class TestLoopErrors:
    def test_upstream_failure_propagates(self, make_ctx, alice, registry):
        completion = FakeCompletion([UpstreamUnavailable("LLM call timed out")])
        with pytest.raises(UpstreamUnavailable):
            AgentLoop(completion, registry).run(make_ctx(alice, completion=completion), "hi")

    def test_empty_final_answer_is_malformed(self, make_ctx, alice, registry):
        completion = FakeCompletion([final("")])
        with pytest.raises(MalformedResponse):
            AgentLoop(completion, registry).run(make_ctx(alice, completion=completion), "hi")

    def test_ceiling_returns_partial_answer(self, make_ctx, alice, registry):
        completion = FakeCompletion([
            tool_call("get_my_schedule", {}, call_id=f"c{i}") for i in range(3)
        ])
        result = AgentLoop(completion, registry, max_iterations=3).run(make_ctx(alice, completion=completion), "loop")
        assert result.status == STATUS_ABORTED
        assert result.reply.strip()
        assert "get_my_schedule" in result.reply
        assert len(result.tool_trace) == 3
        assert result.tools_used == ["get_my_schedule"]

    def test_ceiling_prefers_last_assistant_text(self, make_ctx, alice, registry):
        completion = FakeCompletion([
            tool_call("get_my_schedule", {}, content="Checking your calendar first."),
            tool_call("get_my_schedule", {}),
        ])
        result = AgentLoop(completion, registry, max_iterations=2).run(make_ctx(alice, completion=completion), "x")
        assert result.reply == "Checking your calendar first."


# ─────────────────────────────────────────────────────────────────────────────
# AssistantService
# ─────────────────────────────────────────────────────────────────────────────


class TestAssistantService:
    def test_done_turn_persisted_and_reused(self, make_ctx, alice, registry):
        completion = FakeCompletion([final("first reply"), final("second reply")])
        store = InMemoryConversationStore()
        service = make_service(completion, registry, store)
        ctx = make_ctx(alice, completion=completion)

        service.run_turn(ctx, "first")
        service.run_turn(ctx, "second")

        assert [m["content"] for m in service.get_history(alice.subject_id)] == [
            "first", "first reply", "second", "second reply",
        ]
        sent = completion.chat_calls[1]["messages"]
        assert [m["content"] for m in sent[1:]] == ["first", "first reply", "second"]

    def test_prior_history_overrides_store(self, make_ctx, alice, registry):
        completion = FakeCompletion([final("ok")])
        store = InMemoryConversationStore()
        store.append_turn(alice.subject_id, "stored", "stored reply")
        service = make_service(completion, registry, store)

        service.run_turn(make_ctx(alice, completion=completion), "new", [{"role": "user", "content": "given"}])
        sent = completion.chat_calls[0]["messages"]
        assert [m["content"] for m in sent[1:]] == ["given", "new"]

    def test_aborted_and_failed_turns_not_persisted(self, make_ctx, alice, registry):
        completion = FakeCompletion([tool_call("get_my_schedule", {}), UpstreamUnavailable("down")])
        store = InMemoryConversationStore()
        service = make_service(completion, registry, store, max_iterations=1)
        ctx = make_ctx(alice, completion=completion)

        assert service.run_turn(ctx, "loop").status == STATUS_ABORTED
        with pytest.raises(UpstreamUnavailable):
            service.run_turn(ctx, "fail")
        assert store.get(alice.subject_id) == []

    def test_rate_limited_before_the_loop(self, make_ctx, alice, registry):
        completion = FakeCompletion([final("ok")] * 3)
        service = make_service(completion, registry)
        ctx = make_ctx(alice, completion=completion)
        for _ in range(3):
            service.run_turn(ctx, "hi")
        with pytest.raises(RateLimited) as exc:
            service.run_turn(ctx, "hi")
        assert exc.value.retry_after_seconds == 60
        assert len(completion.chat_calls) == 3

    def test_clear_history(self, make_ctx, alice, registry):
        completion = FakeCompletion([final("ok")])
        service = make_service(completion, registry)
        service.run_turn(make_ctx(alice, completion=completion), "hi")
        service.clear_history(alice.subject_id)
        assert service.get_history(alice.subject_id) == []


# ─────────────────────────────────────────────────────────────────────────────
# End to end
# ─────────────────────────────────────────────────────────────────────────────


def test_schedule_sync_tomorrow_at_two(db, make_ctx, alice, registry):
    """'Schedule a 30-minute sync tomorrow at 2pm' checks conflicts, creates, and cites the new id."""
    start = (FIXED_NOW + timedelta(days=1)).replace(hour=14, minute=0)
    end = start + timedelta(minutes=30)
    window = {"startDateTime": start.isoformat() + "Z", "endDateTime": end.isoformat() + "Z"}

    def reply_with_id(messages):
        created = json.loads(messages[-1]["content"])
        return final(f"Done! Your sync is booked for tomorrow 14:00-14:30 UTC (event ID: {created['eventId']}).")

    completion = FakeCompletion([
        tool_call("check_conflicts", window, call_id="c1"),
        tool_call("create_event", dict(window, title="Sync"), call_id="c2"),
        reply_with_id,
    ])
    service = make_service(completion, registry)

    result = service.run_turn(make_ctx(alice, completion=completion),
                              "Schedule a 30-minute sync tomorrow at 2pm, no need to confirm.")

    assert result.status == STATUS_DONE
    assert result.tools_used == ["check_conflicts", "create_event"]
    assert len(result.affected_event_ids) == 1
    event_id = result.affected_event_ids[0]
    assert event_id in result.reply

    ev = db.get(Event, event_id)
    assert (ev.title, ev.start, ev.end, ev.owner_id) == ("Sync", start, end, alice.subject_id)
    conflicts = json.loads(completion.chat_calls[1]["messages"][-1]["content"])
    assert conflicts == {"hasConflict": False, "conflicts": []}
