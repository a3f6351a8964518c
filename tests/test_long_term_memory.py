import pytest

from kindred.domain.context.memory.long_term_memory import LongTermMemory
from kindred.domain.context.memory.vector_memory_store import InMemoryVectorStore, cosine_similarity
from kindred.domain.exceptions import HealthCheckError, ProviderError
from kindred.domain.models import ChatMessage, ToolCall

from .fakes import ScriptedCompletionProvider, text


def test_cosine_similarity():
    assert cosine_similarity([1.0, 0.0], [1.0, 0.0]) == pytest.approx(1.0)
    assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)
    assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0


@pytest.mark.asyncio
async def test_search_ranks_and_filters_by_threshold():
    store = InMemoryVectorStore(2, similarity_threshold=0.5)
    await store.store("east", [1.0, 0.0], owner=1)
    await store.store("north-east", [1.0, 1.0], owner=1)
    await store.store("north", [0.0, 1.0], owner=1)
    await store.store("other owner", [1.0, 0.0], owner=2)

    matches = await store.search([1.0, 0.1], owner=1)

    assert [m.content for m in matches] == ["east", "north-east"]
    assert matches[0].score > matches[1].score
    assert len(await store.search([1.0, 0.1], owner=1, limit=1)) == 1


@pytest.mark.asyncio
async def test_store_keeps_newest_memories_per_owner():
    store = InMemoryVectorStore(2, max_memories=2)
    for name in ("a", "b", "c"):
        await store.store(name, [1.0, 0.0], owner=1)

    assert [m["content"] for m in store.collections[1]] == ["b", "c"]


@pytest.mark.asyncio
async def test_dimension_mismatch_fails_health_check():
    store = InMemoryVectorStore(3)

    with pytest.raises(HealthCheckError):
        await store.store("bad", [1.0, 0.0], owner=1)

    store.collections[1] = [{"id": "x", "content": "legacy", "vector": [1.0, 0.0]}]
    with pytest.raises(HealthCheckError) as excinfo:
        await store.health_check(1)
    assert (excinfo.value.expected, excinfo.value.actual) == (3, 2)

    await store.health_check(2)


@pytest.mark.asyncio
async def test_memories_are_stored_with_placeholders(memory, vector_store):
    await memory.remember("Sam told Ada about the trip")

    assert vector_store.collections[1][0]["content"] == "<user> told <assistant> about the trip"
    assert await memory.recall("Sam told Ada about the trip") == ["Sam told Ada about the trip"]


def test_transcript_skips_tool_turns(memory):
    messages = [
        ChatMessage.user("I'm Sam"),
        ChatMessage.from_tool_call(ToolCall(id="c", name="memory_recall")),
        ChatMessage.assistant("Nice to meet you"),
    ]

    assert memory.format_transcript(messages) == "<user>: I'm <user>\n---\n<assistant>: Nice to meet you"


@pytest.mark.asyncio
async def test_archive_summarizes_then_stores(memory, vector_store):
    summarizer = ScriptedCompletionProvider([text("- <user> is planning a trip")])

    memory_id = await memory.archive([ChatMessage.user("planning a trip")], summarizer)

    assert memory_id == vector_store.collections[1][0]["id"]
    assert summarizer.calls[0].user_prompt.content == "<user>: planning a trip"
    assert summarizer.calls[0].tools == []


@pytest.mark.asyncio
async def test_archive_rejects_empty_summary(memory):
    summarizer = ScriptedCompletionProvider([text("")])

    with pytest.raises(ProviderError):
        await memory.archive([ChatMessage.user("hello")], summarizer)


@pytest.mark.asyncio
async def test_archive_of_tool_turns_only_is_skipped(memory):
    summarizer = ScriptedCompletionProvider([])

    result = await memory.archive([ChatMessage.from_tool_call(ToolCall(id="c", name="x"))], summarizer)

    assert result is None
    assert summarizer.calls == []


def test_placeholders_replace_whole_names_only(embedder, vector_store):
    memory = LongTermMemory(embedder, vector_store, owner=1, user_name="Al", assistant_name="Ada")

    transcript = memory.format_transcript([ChatMessage.user("Also, Al's cat likes Adam")])

    assert transcript == "<user>: Also, <user>'s cat likes Adam"


def test_empty_names_leave_text_alone(embedder, vector_store):
    memory = LongTermMemory(embedder, vector_store, owner=1, user_name="", assistant_name="")

    assert memory.format_transcript([ChatMessage.assistant("hello")]) == ": hello"
