"""
Tests for the per-session conversation memory.
Run with: pytest tests/test_memory.py
"""

import asyncio
import gc

import pytest

from conftest import FakeBackend
from cantor.config import ChatSettings
from cantor.errors import MethodNotAllowed, MissingMessage, UpstreamModelError
from cantor.memory import ConversationMemory, MemoryRegistry, MemoryState
from cantor.storage.models import Message


def _memory(store, backend, session_id="s1", **settings):
    return ConversationMemory(session_id, store, backend, ChatSettings(**settings))


def _prior(n: int) -> list[Message]:
    return [
        Message(role="user" if i % 2 == 0 else "assistant", content=f"old {i}", timestamp=i)
        for i in range(n)
    ]


# ---------------------------------------------------------------------------
# Activation / history
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_new_session_starts_empty(store, backend):
    mem = _memory(store, backend)
    assert mem.state is MemoryState.UNINITIALIZED

    assert await mem.get_history() == []
    assert mem.state is MemoryState.READY


@pytest.mark.asyncio
async def test_activation_loads_persisted_log(store, backend):
    store.put("s1", _prior(3))
    mem = _memory(store, backend)

    history = await mem.get_history()
    assert [m.content for m in history] == ["old 0", "old 1", "old 2"]


@pytest.mark.asyncio
async def test_get_history_idempotent(store, backend):
    store.put("s1", _prior(4))
    mem = _memory(store, backend)

    first = await mem.get_history()
    second = await mem.get_history()
    assert first == second
    assert backend.calls == []


@pytest.mark.asyncio
async def test_get_history_returns_copy(store, backend):
    mem = _memory(store, backend)
    history = await mem.get_history()
    history.append(Message(role="user", content="sneaky"))

    assert await mem.get_history() == []


@pytest.mark.asyncio
async def test_failed_load_can_retry(store, backend, monkeypatch):
    mem = _memory(store, backend)

    def broken(session_id):
        raise RuntimeError("disk on fire")

    monkeypatch.setattr(store, "get", broken)
    with pytest.raises(RuntimeError):
        await mem.get_history()
    assert mem.state is MemoryState.UNINITIALIZED

    monkeypatch.undo()
    assert await mem.get_history() == []


# ---------------------------------------------------------------------------
# submit_turn
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_submit_turn_appends_pair(store, backend):
    mem = _memory(store, backend)
    result = await mem.submit_turn("What is a canon?")

    assert result["reply"] == "reply 1"
    history = result["history"]
    assert [(m.role, m.content) for m in history] == [
        ("user", "What is a canon?"),
        ("assistant", "reply 1"),
    ]
    assert history[0].timestamp == history[1].timestamp


@pytest.mark.asyncio
async def test_submit_turn_persists_before_return(store, backend):
    mem = _memory(store, backend)
    result = await mem.submit_turn("hello")

    assert store.get("s1") == result["history"]


@pytest.mark.asyncio
async def test_round_trip_through_fresh_activation(store, backend):
    first = _memory(store, backend)
    await first.submit_turn("one")
    result = await first.submit_turn("two")

    fresh = _memory(store, backend)
    assert await fresh.get_history() == result["history"]


@pytest.mark.asyncio
async def test_log_never_exceeds_limit(store, backend):
    mem = _memory(store, backend)
    for i in range(20):
        result = await mem.submit_turn(f"question {i}")
        assert len(result["history"]) <= 12

    history = await mem.get_history()
    assert len(history) == 12
    assert history[-2].content == "question 19"
    assert history[0].content == "question 14"


@pytest.mark.asyncio
async def test_eleven_prior_messages(store, backend):
    """11 stored + one turn = exactly 12; only the single oldest is dropped."""
    prior = _prior(11)
    store.put("s1", prior)
    mem = _memory(store, backend)

    result = await mem.submit_turn("newest")
    history = result["history"]

    assert len(history) == 12
    assert history[:10] == prior[1:]
    assert (history[-2].role, history[-2].content) == ("user", "newest")
    assert (history[-1].role, history[-1].content) == ("assistant", "reply 1")


@pytest.mark.asyncio
async def test_custom_limit(store, backend):
    mem = _memory(store, backend, history_limit=4)
    for i in range(5):
        result = await mem.submit_turn(f"q{i}")
    assert [m.content for m in result["history"]] == ["q3", "reply 4", "q4", "reply 5"]


@pytest.mark.asyncio
async def test_empty_message_rejected(store, backend):
    store.put("s1", _prior(2))
    mem = _memory(store, backend)

    with pytest.raises(MissingMessage):
        await mem.submit_turn("")

    assert store.get("s1") == _prior(2)
    assert backend.calls == []


@pytest.mark.asyncio
async def test_model_failure_leaves_log_untouched(store):
    store.put("s1", _prior(3))
    mem = _memory(store, FakeBackend(fail=True))

    with pytest.raises(UpstreamModelError) as exc_info:
        await mem.submit_turn("will fail")

    assert exc_info.value.details == "HTTP 500: boom"
    assert exc_info.value.status_code == 502
    assert store.get("s1") == _prior(3)
    assert await mem.get_history() == _prior(3)


@pytest.mark.asyncio
async def test_no_backend_is_upstream_error(store):
    mem = _memory(store, None)
    with pytest.raises(UpstreamModelError):
        await mem.submit_turn("anyone there?")
    assert store.get("s1") is None


@pytest.mark.asyncio
async def test_unrecoverable_result_uses_fallback(store):
    mem = _memory(store, FakeBackend(data={"usage": {"tokens": 3}}))
    result = await mem.submit_turn("hm?")
    assert result["reply"] == "I am momentarily lost in counterpoint. Please try again."


# ---------------------------------------------------------------------------
# Prompt assembly
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_prompt_shape(store, backend):
    store.put("s1", _prior(2))
    mem = _memory(store, backend, persona="PERSONA", model="test-model")

    await mem.submit_turn("Why parallel fifths?", topic="voice leading")

    model, body = backend.calls[0]
    assert model == "test-model"
    assert body["temperature"] == 0.35
    assert body["max_tokens"] == 512
    assert body["messages"] == [
        {"role": "system", "content": "PERSONA\nThe student is currently studying voice leading."},
        {"role": "user", "content": "old 0"},
        {"role": "assistant", "content": "old 1"},
        {"role": "user", "content": "Why parallel fifths?"},
    ]


@pytest.mark.asyncio
async def test_prompt_without_topic(store, backend):
    mem = _memory(store, backend, persona="PERSONA")
    await mem.submit_turn("hi")
    assert backend.calls[0][1]["messages"][0] == {"role": "system", "content": "PERSONA"}


@pytest.mark.asyncio
async def test_prompt_context_is_trimmed(store, backend):
    store.put("s1", _prior(11))
    mem = _memory(store, backend)
    await mem.submit_turn("q")

    messages = backend.calls[0][1]["messages"]
    # system + 10 context + new user message
    assert len(messages) == 12
    assert messages[1]["content"] == "old 1"


# ---------------------------------------------------------------------------
# Mock mode
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_mock_mode_skips_backend(store, backend):
    mem = _memory(store, backend, mock=True)
    result = await mem.submit_turn("What is a chorale?", topic="harmony")

    assert backend.calls == []
    assert 'You asked while focusing on harmony: "What is a chorale?"' in result["reply"]
    assert "Mock Bach Reply" in result["reply"]
    assert store.get("s1")[-1].content == result["reply"]


@pytest.mark.asyncio
async def test_mock_reply_is_deterministic(store, backend):
    a = await _memory(store, backend, session_id="a", mock=True).submit_turn("same")
    b = await _memory(store, backend, session_id="b", mock=True).submit_turn("same")
    assert a["reply"] == b["reply"]


# ---------------------------------------------------------------------------
# Serialization and isolation
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_concurrent_turns_are_serialized(store):
    backend = FakeBackend(delay=0.01)
    mem = _memory(store, backend)

    await asyncio.gather(*(mem.submit_turn(f"q{i}") for i in range(4)))

    assert backend.max_in_flight == 1
    history = await mem.get_history()
    assert len(history) == 8
    assert store.get("s1") == history


@pytest.mark.asyncio
async def test_different_sessions_run_in_parallel(store):
    backend = FakeBackend(delay=0.01)
    a = _memory(store, backend, session_id="a")
    b = _memory(store, backend, session_id="b")

    await asyncio.gather(a.submit_turn("for a"), b.submit_turn("for b"))

    assert backend.max_in_flight == 2


@pytest.mark.asyncio
async def test_sessions_do_not_see_each_other(store, backend):
    registry = MemoryRegistry(store, backend, ChatSettings())
    await registry.get("alice").submit_turn("alice's secret")
    await registry.get("bob").submit_turn("bob's question")

    alice = [m.content for m in await registry.get("alice").get_history()]
    bob = [m.content for m in await registry.get("bob").get_history()]
    assert "bob's question" not in alice
    assert "alice's secret" not in bob


def test_registry_routes_same_key_to_same_instance(store, backend):
    registry = MemoryRegistry(store, backend, ChatSettings())
    k = registry.get("k")
    other = registry.get("other")
    assert registry.get("k") is k
    assert other is not k
    assert len(registry) == 2


def test_registry_releases_idle_instances(store, backend):
    registry = MemoryRegistry(store, backend, ChatSettings())
    for n in range(100):
        registry.get(f"visitor-{n}")
    gc.collect()
    assert len(registry) == 0


@pytest.mark.asyncio
async def test_released_instance_reloads_from_store(store, backend):
    registry = MemoryRegistry(store, backend, ChatSettings())
    await registry.get("s1").submit_turn("remember me")
    gc.collect()
    assert len(registry) == 0

    history = await registry.get("s1").get_history()
    assert [m.content for m in history] == ["remember me", "reply 1"]


def test_instance_id_is_stable():
    assert MemoryRegistry.instance_id("abc") == MemoryRegistry.instance_id("abc")
    assert MemoryRegistry.instance_id("abc") != MemoryRegistry.instance_id("abd")


# ---------------------------------------------------------------------------
# Message interface
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_handle_post_and_get(store, backend):
    mem = _memory(store, backend)
    posted = await mem.handle("POST", {"message": "hi", "topic": None})
    assert posted["reply"] == "reply 1"
    assert posted["history"][0] == {
        "role": "user", "content": "hi", "timestamp": posted["history"][0]["timestamp"],
    }

    fetched = await mem.handle("get")
    assert fetched == {"history": posted["history"]}


@pytest.mark.asyncio
async def test_handle_rejects_other_verbs(store, backend):
    mem = _memory(store, backend)
    with pytest.raises(MethodNotAllowed) as exc_info:
        await mem.handle("DELETE")
    assert exc_info.value.status_code == 405


@pytest.mark.asyncio
async def test_handle_post_without_message(store, backend):
    mem = _memory(store, backend)
    with pytest.raises(MissingMessage):
        await mem.handle("POST", {})


def test_history_limit_must_fit_a_pair():
    with pytest.raises(ValueError):
        ChatSettings(history_limit=1)
