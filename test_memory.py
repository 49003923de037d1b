import pytest

from agent import AgentStatus
from agent.events import StatusChannel
from agent.memory import ConversationMemory


def test_history_keeps_insertion_order_and_excludes_telemetry():
    memory = ConversationMemory()
    memory.add("user", "GOAL: fix login")
    memory.record_failure("read_file", "File not found: x.py", call_id="c1")
    memory.add("assistant", "Calling tools: read_file")

    assert memory.get_messages() == [
        {"role": "user", "content": "GOAL: fix login"},
        {"role": "assistant", "content": "Calling tools: read_file"},
    ]
    assert [t.kind for t in memory.get_telemetry()] == ["tool_failure"]
    assert memory.get_telemetry("generation_error") == []


def test_unknown_role_is_rejected():
    with pytest.raises(ValueError):
        ConversationMemory().add("tool", "nope")


def test_status_channel_isolates_failing_subscriber():
    channel = StatusChannel()
    seen = []

    def broken(status):
        raise RuntimeError("listener crashed")

    channel.subscribe(broken)
    unsubscribe = channel.subscribe(seen.append)

    channel.publish(AgentStatus.PLANNING)
    unsubscribe()
    channel.publish(AgentStatus.IDLE)

    assert seen == [AgentStatus.PLANNING]
    assert channel.current == AgentStatus.IDLE
    assert channel.history == [AgentStatus.PLANNING, AgentStatus.IDLE]
