import pytest

from gateway.domain.context.assembler import DEFAULT_SYSTEM_PROMPT, ContextAssembler
from gateway.domain.context.pressure import FLUSH_PREFIX, MemoryPressureDetector, categorize
from gateway.domain.context.threads import ThreadManager
from gateway.domain.models.session import Message
from gateway.infrastructure.persistence.inmemory import InMemoryPromptRepository, InMemoryThreadRepository

SECTION_ORDER = [
    "system_prompt",
    "soul",
    "long_term_memory",
    "recent_activity",
    "skills",
    "history",
    "tools",
    "user_message",
]


@pytest.fixture
def thread_manager():
    return ThreadManager(InMemoryThreadRepository(), InMemoryPromptRepository())


@pytest.mark.asyncio
async def test_assemble_without_memory_uses_base_prompt():
    context = await ContextAssembler().assemble([], "hello", "anthropic:claude-sonnet-4-5-20250929")
    assert context.system == DEFAULT_SYSTEM_PROMPT
    assert [s.name for s in context.sections] == SECTION_ORDER
    assert context.messages[-1].role == "user"
    assert context.messages[-1].content == "hello"


@pytest.mark.asyncio
async def test_assemble_appends_memory_sections(memory_manager, memory_dir):
    (memory_dir / "SOUL.md").write_text("I am terse.")
    (memory_dir / "MEMORY.md").write_text("- The user prefers tabs")
    memory_manager.append_daily_log("Deployed the docs site")

    context = await ContextAssembler(memory_manager).assemble([], "hi", "fake:model")

    assert context.system.startswith(DEFAULT_SYSTEM_PROMPT + "\n\n# Your Identity\nI am terse.")
    assert "\n\n# Long-Term Memory\n- The user prefers tabs" in context.system
    assert "# Recent Activity" in context.system
    assert "Deployed the docs site" in context.section("recent_activity").content


@pytest.mark.asyncio
async def test_section_measurements_and_totals():
    history = [Message(role="user", content="abcd" * 10), Message(role="assistant", content="ok")]
    context = await ContextAssembler(system_prompt="base").assemble(
        history, "12345678", "anthropic:claude-sonnet-4-5-20250929", tool_descriptions="- read_file: Read"
    )

    user = context.section("user_message")
    assert user.byte_count == 8
    assert user.token_estimate == 2
    assert user.cost_estimate == 2 / 1_000_000 * 3.0

    assert context.section("tools").content == "- read_file: Read"
    assert context.section("history").content.startswith("user: abcd")
    assert context.totals.token_estimate == sum(s.token_estimate for s in context.sections)
    assert context.totals.byte_count == sum(s.byte_count for s in context.sections)


@pytest.mark.asyncio
async def test_identical_inputs_measure_identically(memory_manager, memory_dir):
    (memory_dir / "SOUL.md").write_text("I am terse.")
    (memory_dir / "MEMORY.md").write_text("- The user prefers tabs")
    history = [Message(role="user", content="hello"), Message(role="assistant", content="hi there")]
    assembler = ContextAssembler(memory_manager, system_prompt="base")

    first = await assembler.assemble(history, "next?", "fake:model", tool_descriptions="- read_file: Read")
    second = await assembler.assemble(history, "next?", "fake:model", tool_descriptions="- read_file: Read")

    def measurements(context):
        return [(s.name, s.byte_count, s.token_estimate, s.cost_estimate) for s in context.sections]

    assert measurements(first) == measurements(second)
    assert first.system == second.system
    assert first.totals == second.totals


@pytest.mark.asyncio
async def test_inspect_does_not_add_a_message():
    history = [Message(role="user", content="hello")]
    context = await ContextAssembler().inspect(history, "fake:model")
    assert context.section("user_message").token_estimate == 0


@pytest.mark.asyncio
async def test_global_prompts_replace_default_in_priority_order(thread_manager):
    await thread_manager.add_global_prompt("style", "Answer in English.", priority=1)
    await thread_manager.add_global_prompt("safety", "Never run rm -rf.", priority=5)
    assembler = ContextAssembler(system_prompt="default", thread_manager=thread_manager)

    context = await assembler.assemble([], "hi", "fake:model")

    assert context.system == "Never run rm -rf.\n\nAnswer in English."
    assert context.section("system_prompt").content == context.system


@pytest.mark.asyncio
async def test_thread_prompt_is_appended_for_that_thread(thread_manager):
    await thread_manager.add_global_prompt("style", "Answer in English.")
    thread = await thread_manager.create_thread("Release notes", system_prompt="You write changelogs.")
    assembler = ContextAssembler(system_prompt="default", thread_manager=thread_manager)

    with_thread = await assembler.assemble([], "hi", "fake:model", thread_id=thread.id)
    without_thread = await assembler.assemble([], "hi", "fake:model")
    unknown_thread = await assembler.assemble([], "hi", "fake:model", thread_id="missing")

    assert with_thread.system == "Answer in English.\n\nYou write changelogs."
    assert without_thread.system == "Answer in English."
    assert unknown_thread.system == without_thread.system


@pytest.mark.asyncio
async def test_empty_prompt_store_falls_back_to_default(thread_manager):
    thread = await thread_manager.create_thread("Scratch")
    assembler = ContextAssembler(system_prompt="default", thread_manager=thread_manager)

    context = await assembler.assemble([], "hi", "fake:model", thread_id=thread.id)

    assert context.system == "default"


def test_pressure_reading():
    detector = MemoryPressureDetector(max_context_tokens=1000, threshold=0.7)
    reading = detector.check({"system": 300, "memory": 100, "conversation": 300})
    assert reading.should_flush is True
    assert reading.total_tokens == 700
    assert reading.remaining_tokens == 300

    below = detector.check({"system": 100, "memory": 0, "conversation": 100})
    assert below.should_flush is False
    assert below.usage == 0.2


@pytest.mark.asyncio
async def test_categorize_groups_sections():
    history = [Message(role="user", content="x" * 40)]
    context = await ContextAssembler(system_prompt="y" * 8).assemble(history, "z" * 4, "fake:model")
    categories = categorize(context)
    assert categories["system"] == 2
    assert categories["conversation"] == context.section("history").token_estimate + 1
    assert categories["memory"] == 0


@pytest.mark.asyncio
async def test_flush_moves_older_history_to_daily_log(memory_manager):
    history = [Message(role="user", content=f"message number {i}") for i in range(4)]
    context = await ContextAssembler().assemble(history, "next", "fake:model")
    detector = MemoryPressureDetector(max_context_tokens=10, threshold=0.5)

    reading = detector.check_and_flush(context, memory_manager)

    assert reading.should_flush is True
    log = memory_manager.daily_log_path().read_text()
    assert FLUSH_PREFIX.strip() in log
    assert "user: message number 0" in log
    assert "user: message number 1" in log
    assert "message number 3" not in log


@pytest.mark.asyncio
async def test_flush_failure_does_not_abort_the_turn(memory_manager, monkeypatch):
    history = [Message(role="user", content=f"message number {i}") for i in range(4)]
    context = await ContextAssembler().assemble(history, "next", "fake:model")

    def broken(content):
        raise RuntimeError("log writer crashed")

    monkeypatch.setattr(memory_manager, "append_daily_log", broken)
    reading = MemoryPressureDetector(max_context_tokens=10, threshold=0.5).check_and_flush(context, memory_manager)

    assert reading.should_flush is True


@pytest.mark.asyncio
async def test_no_flush_below_threshold(memory_manager):
    context = await ContextAssembler().assemble([Message(role="user", content="hi")], "there", "fake:model")
    MemoryPressureDetector().check_and_flush(context, memory_manager)
    assert not memory_manager.daily_log_path().exists()
