import asyncio
import dataclasses

from agent import AgentStatus
from bedrock_service import BedrockError, CredentialError
from codebase_index import VectorIndex
from config import PROVIDER_LIST
from conftest import fake_embed, reply, tool_call
from tools import Tool


def _observations(agent):
    return agent.flow.get_window(lambda e: e.type == "observation")


def test_completes_on_first_iteration(make_agent):
    agent, generator = make_agent([reply("Refactored the login flow. Task complete.")])
    seen = []
    agent.on_status(seen.append)

    result = asyncio.run(agent.execute("Refactor login"))

    assert result == "Refactored the login flow. Task complete."
    assert len(generator.calls) == 1
    assert seen[0] == AgentStatus.PLANNING
    assert seen[-1] == AgentStatus.IDLE
    assert agent.status.current == AgentStatus.IDLE


def test_stops_at_iteration_ceiling(make_agent, agent_config):
    config = dataclasses.replace(agent_config, max_iterations=2)
    agent, generator = make_agent(
        [reply("Looking around", tool_call("list_files")), reply("Still looking", tool_call("list_files"))],
        config=config,
    )

    result = asyncio.run(agent.execute("Explore"))

    assert len(generator.calls) == 2
    assert result == "Still looking"
    assert agent.iterations == 2


def test_memory_records_prompt_reply_and_tool_results(make_agent):
    agent, _ = make_agent([
        reply("", tool_call("read_file", "c1", path="src/auth.py")),
        reply("Task complete."),
    ])

    asyncio.run(agent.execute("Read the auth module"))

    history = agent.memory.get_history()
    assert [e.role for e in history[:3]] == ["user", "assistant", "system"]
    assert history[0].content.startswith("GOAL: Read the auth module")
    assert history[1].content == "Calling tools: read_file"
    assert history[2].content.startswith("Tool Results: ")
    assert "check_password" in history[2].content


def test_staged_write_then_discard(make_agent, workspace):
    (workspace / "a.ts").write_text("original\n", encoding="utf-8")
    agent, _ = make_agent([
        reply("", tool_call("write_file", path="a.ts", content="X")),
        reply("", tool_call("discard_changes")),
        reply("", tool_call("read_file", path="a.ts")),
        reply("Task complete."),
    ])

    asyncio.run(agent.execute("Try an edit and revert it"))

    last = _observations(agent)[-1]
    assert last.status == "ok"
    assert "original" in last.content
    assert (workspace / "a.ts").read_text(encoding="utf-8") == "original\n"
    assert agent.context.shadow.staged_paths() == []

    write_action = agent.flow.get_window(lambda e: e.type == "action")[0]
    assert write_action.affects == ["a.ts"]
    assert write_action.surface == "editor"


def test_tool_failure_goes_to_telemetry_not_memory(make_agent):
    agent, _ = make_agent([
        reply("", tool_call("flaky", "c1")),
        reply("Task complete."),
    ])

    def boom(**kwargs):
        raise RuntimeError("disk on fire")

    agent.router.register(Tool(name="flaky", description="Fails", parameters={"type": "object"}, handler=boom))

    asyncio.run(agent.execute("Do the flaky thing"))

    action, observation = agent.flow.get_window()[:2]
    assert observation.type == "observation"
    assert observation.status == "error"
    assert observation.content == "Error: disk on fire"
    assert observation.caused_by == [action.id]

    failures = agent.memory.get_telemetry("tool_failure")
    assert len(failures) == 1
    assert failures[0].content == "disk on fire"
    assert failures[0].metadata["tool"] == "flaky"
    assert failures[0].metadata["call_id"] == "c1"

    for message in agent.memory.get_messages():
        assert "disk on fire" not in message["content"]
        assert not message["content"].startswith("Tool Results")
    # The next prompt surfaces the failure as tension
    assert "1 tool call(s) failed so far (flaky)" in agent.memory.get_messages()[-2]["content"]


def test_failed_tool_result_is_a_failure(make_agent):
    agent, _ = make_agent([
        reply("", tool_call("read_file", path="missing.py")),
        reply("Task complete."),
    ])

    asyncio.run(agent.execute("Read a missing file"))

    observation = _observations(agent)[0]
    assert observation.status == "error"
    assert "File not found" in observation.content
    assert agent.memory.get_telemetry("tool_failure")


def test_unknown_tool_is_recorded_as_failure(make_agent):
    agent, _ = make_agent([reply("", tool_call("teleport")), reply("Task complete.")])

    asyncio.run(agent.execute("Go"))

    observation = _observations(agent)[0]
    assert observation.status == "error"
    assert "Tool not found: teleport" in observation.content


def test_planning_phase_offers_read_only_tools(make_agent, agent_config, workspace):
    config = dataclasses.replace(agent_config, planning_iterations=1)
    agent, generator = make_agent([
        reply("", tool_call("write_file", path="x.py", content="1")),
        reply("Task complete."),
    ], config=config)

    asyncio.run(agent.execute("Plan first"))

    planning_tools = {t["name"] for t in generator.calls[0]["tools"]}
    acting_tools = {t["name"] for t in generator.calls[1]["tools"]}
    assert "read_file" in planning_tools
    assert "write_file" not in planning_tools
    assert "write_file" in acting_tools

    observation = _observations(agent)[0]
    assert observation.status == "error"
    assert "not available in the current phase" in observation.content
    assert agent.context.shadow.staged_paths() == []


def test_delegation_spawns_expert_on_shared_generator(make_agent):
    agent, generator = make_agent([
        reply("", tool_call("delegate_task", goal="Review auth for bugs", expert_type="reviewer")),
        reply("No issues found. Task complete."),
        reply("Task complete."),
    ])

    asyncio.run(agent.execute("Get a review"))

    assert len(generator.calls) == 3
    assert "[ROLE: REVIEWER]" in generator.calls[1]["system"]
    assert "[ROLE:" not in generator.calls[0]["system"]
    observation = _observations(agent)[0]
    assert observation.status == "ok"
    assert observation.content == "EXPERT (reviewer) REPORT:\nNo issues found. Task complete."
    # Only the root agent persists a session
    assert [s.session_id for s in agent.context.sessions.list_sessions()] == [agent.session_id]


def test_delegation_refused_at_depth_ceiling(make_agent, agent_config):
    from agent.core import CoreAgent

    root, generator = make_agent([
        reply("", tool_call("delegate_task", goal="Dig deeper", expert_type="researcher")),
        reply("Task complete."),
    ])
    deep = CoreAgent(root.context, persona="researcher", depth=2, config=agent_config)

    asyncio.run(deep.execute("Research"))

    assert len(generator.calls) == 2
    observation = _observations(deep)[0]
    assert observation.status == "ok"
    assert observation.content.startswith("Error: Maximum delegation depth reached (3)")


def test_credential_error_stops_loop(make_agent):
    agent, generator = make_agent([CredentialError("AWS credentials not configured.")])

    result = asyncio.run(agent.execute("Anything"))

    assert result == ""
    assert len(generator.calls) == 1
    assert agent.memory.get_messages()[-1] == {"role": "system", "content": "Error: AWS credentials not configured."}
    telemetry = agent.memory.get_telemetry("generation_error")[0]
    assert telemetry.metadata == {"provider": "Anthropic", "credential": True, "retryable": False}
    assert agent.status.current == AgentStatus.IDLE


def test_retryable_generation_error_is_flagged(make_agent):
    agent, _ = make_agent([BedrockError("Bedrock API error: slow down", retryable=True)])
    asyncio.run(agent.execute("Anything"))
    telemetry = agent.memory.get_telemetry("generation_error")[0]
    assert telemetry.metadata["credential"] is False
    assert telemetry.metadata["retryable"] is True


def test_provider_selection(make_agent):
    agent, generator = make_agent([reply("Task complete.")])
    asyncio.run(agent.execute("Anything"))
    assert generator.calls[0]["provider"] == "Anthropic"
    assert generator.calls[0]["model"] == PROVIDER_LIST[0]["model"]
    assert generator.calls[0]["credentials"] == {"Anthropic": "key"}

    fallback, generator = make_agent([reply("Task complete.")], credentials={})
    asyncio.run(fallback.execute("Anything"))
    assert generator.calls[0]["provider"] == "Bedrock"
    assert generator.calls[0]["model"] == PROVIDER_LIST[-1]["model"]
    assert generator.calls[0]["credentials"] == {}


def test_final_checkpoint_persists_metrics(make_agent):
    agent, _ = make_agent([reply("", tool_call("list_files")), reply("Task complete.")])

    asyncio.run(agent.execute("Look around"))

    snapshot = agent.context.sessions.load_session(agent.session_id)
    assert snapshot.goal == "Look around"
    assert len(snapshot.flow) == 2
    assert snapshot.metadata["iterations"] == 2
    assert snapshot.metadata["tokens"] == {"input": 20, "output": 10, "pruned": 0, "turns": 2}
    assert snapshot.metadata["depth"] == 0


def test_periodic_checkpoints(make_agent, agent_config, monkeypatch):
    config = dataclasses.replace(agent_config, max_iterations=2, checkpoint_interval=1)
    agent, _ = make_agent(
        [reply("one", tool_call("list_files")), reply("two", tool_call("list_files"))],
        config=config,
    )
    saves = []
    original = agent.context.sessions.auto_save

    def counting(*args, **kwargs):
        saves.append(args[0])
        return original(*args, **kwargs)

    monkeypatch.setattr(agent.context.sessions, "auto_save", counting)

    asyncio.run(agent.execute("Loop"))

    # After iterations 1 and 2, then once more on cleanup
    assert saves == [agent.session_id] * 3


def test_resume_restores_flow_and_continues(make_agent):
    first, _ = make_agent([reply("", tool_call("list_files")), reply("Task complete.")])
    asyncio.run(first.execute("Map the repo"))

    second, generator = make_agent([reply("Picked up where we left off. Task complete.")])
    result = asyncio.run(second.resume(first.session_id))

    assert result == "Picked up where we left off. Task complete."
    assert second.session_id == first.session_id
    assert second.goal == "Map the repo"
    assert len(second.flow) == 2
    assert second.metrics["turns"] == 3
    assert "RECENT FLOW" in generator.calls[0]["messages"][-1]["content"]


def test_resume_unknown_session(make_agent):
    agent, generator = make_agent([])
    assert asyncio.run(agent.resume("session_0")) is None
    assert generator.calls == []


def test_intervention_surfaces_as_tension(make_agent):
    agent, generator = make_agent([reply("Switching to JWT. Task complete.")])
    entry = agent.intervene("Use JWT instead of sessions")

    asyncio.run(agent.execute("Add auth"))

    assert entry.type == "human_intervention"
    prompt = generator.calls[0]["messages"][-1]["content"]
    assert "User corrected approach mid-task: Use JWT instead of sessions" in prompt


def test_token_warning_recorded(make_agent, agent_config):
    config = dataclasses.replace(agent_config, context_token_budget=10)
    agent, _ = make_agent([reply("Task complete.")], config=config)

    asyncio.run(agent.execute("Anything"))

    assert agent.memory.get_telemetry("token_warning")


def test_initialize_workspace_is_incremental(make_agent):
    agent, _ = make_agent([])
    statuses = []
    agent.on_status(statuses.append)

    first = asyncio.run(agent.initialize_workspace())
    second = asyncio.run(agent.initialize_workspace())

    assert sorted(d.path for d in first.changed_documents) == ["README.md", "src/auth.py"]
    assert second.changed_documents == []
    assert statuses == [AgentStatus.INDEXING, AgentStatus.IDLE] * 2

    found = asyncio.run(agent.search_workspace("login password"))
    assert found.success
    assert "src/auth.py" in found.output


def test_initialize_workspace_survives_embedding_failure(make_agent):
    def broken_embed(texts, input_type="search_document"):
        raise ConnectionError("embedding endpoint down")

    agent, _ = make_agent([], vector_index=VectorIndex(broken_embed))

    assert asyncio.run(agent.initialize_workspace()) is None
    assert agent.status.current == AgentStatus.IDLE


def test_files_without_embeddings_stay_pending(make_agent):
    calls = []

    def flaky_embed(texts, input_type="search_document"):
        calls.append(texts)
        if len(calls) == 1:
            return [[] for _ in texts]
        return fake_embed(texts, input_type)

    agent, _ = make_agent([], vector_index=VectorIndex(flaky_embed))

    first = asyncio.run(agent.initialize_workspace())
    assert len(first.changed_documents) == 2
    assert len(agent.context.vector_index) == 0

    second = asyncio.run(agent.initialize_workspace())
    assert sorted(d.path for d in second.changed_documents) == ["README.md", "src/auth.py"]
    assert agent.context.vector_index.paths() == {"README.md", "src/auth.py"}

    third = asyncio.run(agent.initialize_workspace())
    assert third.changed_documents == []


def test_abort_mid_loop_releases_terminal_and_language_server(make_agent, monkeypatch):
    agent, generator = make_agent([
        reply(
            "",
            tool_call("spawn_command", "c1", command="sleep 30"),
            tool_call("list_symbols", "c2", path="src/auth.py"),
        ),
        reply("Task complete."),
    ])
    running_before_abort = []
    original = agent._check_token_budget

    def budget_then_crash(estimated):
        if agent.iterations == 2:
            running_before_abort.append((agent.terminal.is_alive(), agent.lsp.is_running))
            raise RuntimeError("prompt assembly exploded")
        return original(estimated)

    monkeypatch.setattr(agent, "_check_token_budget", budget_then_crash)

    asyncio.run(agent.execute("Start the dev server and look at auth"))

    assert running_before_abort == [(True, True)]
    assert len(generator.calls) == 1
    assert not agent.terminal.is_alive()
    assert not agent.lsp.is_running
    assert agent.status.current == AgentStatus.IDLE
    assert agent.memory.get_messages()[-1] == {"role": "system", "content": "Error: prompt assembly exploded"}
    # Cleanup still checkpoints the root agent
    assert agent.context.sessions.load_session(agent.session_id).metadata["iterations"] == 2
