"""Shared fixtures for the event assistant test suite.

Every test gets its own SQLite file (not in-memory) so the thread pool used by
batched lookups can open independent sessions against the same data.
"""

import json
import os
import tempfile
from collections import deque
from datetime import datetime, timedelta

import pytest

# database.py reads DATABASE_URL at import time
os.environ.setdefault(
    "DATABASE_URL", "sqlite:///" + os.path.join(tempfile.gettempdir(), "event_assistant_test_default.db")
)

from sqlalchemy.orm import sessionmaker  # noqa: E402

import models.conversation  # noqa: E402,F401
from database import make_engine  # noqa: E402
from models.event import Base  # noqa: E402
from schemas.tool_schema import CreateEventInput  # noqa: E402
from services import event_service  # noqa: E402
from services.identity import Identity  # noqa: E402
from services.notifier import NotificationSender, SendResult  # noqa: E402
from services.tool_registry import ToolContext  # noqa: E402

FIXED_NOW = datetime(2026, 3, 10, 9, 0, 0)


# ─────────────────────────────────────────────────────────────────────────────
# Fakes
# ─────────────────────────────────────────────────────────────────────────────


class FakeCompletion:
    """Scripted stand-in for CompletionClient.

    chat() pops from ``chat_replies``; an item may be a message dict, a callable
    taking the message list, or an exception instance to raise.
    complete_json() pops from ``json_replies`` the same way and validates into
    ``response_model`` when one is given.
    """

    def __init__(self, chat_replies=None, json_replies=None):
        self.chat_replies = deque(chat_replies or [])
        self.json_replies = deque(json_replies or [])
        self.chat_calls = []
        self.json_calls = []

    @staticmethod
    def _next(queue, arg):
        if not queue:
            raise AssertionError("FakeCompletion ran out of scripted replies")
        item = queue.popleft()
        if isinstance(item, Exception):
            raise item
        if callable(item):
            item = item(arg)
        return item

    def chat(self, messages, tools=None, temperature=0.2, max_tokens=None, model=None):
        self.chat_calls.append({"messages": [dict(m) for m in messages], "tools": tools})
        return self._next(self.chat_replies, messages)

    def complete_json(self, system_prompt, user_prompt, temperature=0.3, max_tokens=1000,
                      model=None, response_model=None):
        self.json_calls.append({"system": system_prompt, "user": json.loads(user_prompt)})
        value = self._next(self.json_replies, user_prompt)
        if response_model is not None:
            return response_model.model_validate(value)
        return value


class RecordingNotifier(NotificationSender):
    def __init__(self, fail_for=()):
        self.fail_for = set(fail_for)
        self.sent = []

    def send(self, to, subject, html, reply_to=None):
        self.sent.append({"to": to, "subject": subject, "html": html, "reply_to": reply_to})
        if to in self.fail_for:
            return SendResult(False, "mailbox unavailable")
        return SendResult(True)


def tool_call(name, args, call_id="call_1", content=None):
    """Assistant message requesting a single tool call."""
    return {
        "role": "assistant",
        "content": content,
        "tool_calls": [{
            "id": call_id,
            "type": "function",
            "function": {"name": name, "arguments": args if isinstance(args, str) else json.dumps(args)},
        }],
    }


def final(text):
    return {"role": "assistant", "content": text}


# ─────────────────────────────────────────────────────────────────────────────
# Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def engine(tmp_path):
    eng = make_engine(f"sqlite:///{tmp_path / 'test.db'}")
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def alice(db):
    ident = Identity("user-alice", "alice@example.com", "Alice")
    event_service.ensure_user(db, ident)
    return ident


@pytest.fixture
def bob(db):
    ident = Identity("user-bob", "bob@example.com", "Bob")
    event_service.ensure_user(db, ident)
    return ident


@pytest.fixture
def completion():
    return FakeCompletion()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def make_ctx(db, session_factory, completion, notifier):
    def _make(user, **overrides):
        params = dict(
            user=user,
            db=db,
            session_factory=session_factory,
            completion=completion,
            notifier=notifier,
            clock=lambda: FIXED_NOW,
            app_url="https://app.example.com",
        )
        params.update(overrides)
        return ToolContext(**params)
    return _make


@pytest.fixture
def ctx(make_ctx, alice):
    return make_ctx(alice)


@pytest.fixture
def make_event(db):
    """Create an event owned by ``owner`` starting ``hours`` after FIXED_NOW."""

    def _make(owner, hours=24, minutes=60, title="Team sync", **kw):
        start = FIXED_NOW + timedelta(hours=hours)
        payload = CreateEventInput(
            title=title,
            start_date_time=start,
            end_date_time=start + timedelta(minutes=minutes),
            **kw,
        )
        return event_service.create_event(db, owner.subject_id, payload, now=FIXED_NOW)
    return _make
