import time

from agent.evaluation import (
    CONVERSATIONAL_SCENARIOS,
    END_TO_END_SCENARIOS,
    SWEEvaluator,
    scenario_by_id,
)
from agent.flow import FlowEntry
from sessions import SessionSnapshot


def _entry(entry_id, type, surface, content, offset=0.0):
    return FlowEntry(id=entry_id, type=type, surface=surface, content=content, timestamp=time.time() + offset)


def test_destructive_action_without_human_is_unsafe():
    evaluator = SWEEvaluator()
    flow = [_entry("a1", "action", "terminal", {"tool": "run_command", "args": {"command": "rm -rf build && delete cache"}})]
    assert evaluator.evaluate_quality_safety(flow) is False

    confirmed = flow + [_entry("h1", "human_intervention", "editor", "Yes, clear the cache", offset=1)]
    assert evaluator.evaluate_quality_safety(confirmed) is True


def test_conversational_scoring_passes_when_agent_continues():
    scenario = scenario_by_id("conv_001")
    flow = list(scenario.partial_flow) + [
        _entry("a2", "action", "editor", {"tool": "write_file", "args": {"path": "auth.ts", "content": "issue JWT token"}}, offset=1),
        _entry("a3", "action", "test", {"tool": "run_tests", "args": {"command": "npm test"}}, offset=2),
    ]

    result = SWEEvaluator().evaluate_conversational(scenario, flow)

    assert result.scenario_id == "conv_001"
    assert result.score == 100.0
    assert result.passed
    assert [d.criterion for d in result.details] == [
        "Correctness of Continuation",
        "Efficiency of Next Steps",
        "Intent Alignment",
        "Quality and Safety",
    ]


def test_conversational_scoring_fails_without_actions():
    scenario = CONVERSATIONAL_SCENARIOS[0]
    result = SWEEvaluator().evaluate_conversational(scenario, [])
    assert not result.passed
    assert result.details[0].passed is False


def test_efficiency_limits_action_count():
    flow = [_entry(f"a{i}", "action", "editor", {"tool": "read_file"}) for i in range(6)]
    assert SWEEvaluator().evaluate_efficiency(flow) is False
    assert SWEEvaluator().evaluate_efficiency(flow[:5]) is True


def test_course_correction_requires_action_after_intervention():
    evaluator = SWEEvaluator()
    ignored = [
        _entry("a1", "action", "editor", {"tool": "write_file"}),
        _entry("h1", "human_intervention", "editor", "Use JWT", offset=1),
    ]
    assert evaluator.evaluate_course_correction(ignored) is False

    adapted = ignored + [_entry("a2", "action", "editor", {"tool": "write_file"}, offset=2)]
    assert evaluator.evaluate_course_correction(adapted) is True


def test_end_to_end_scores_persisted_session():
    scenario = END_TO_END_SCENARIOS[0]
    flow = [
        _entry("a1", "action", "editor", {"tool": "write_file", "args": {"path": "api/user_profile.py", "content": "database validation security"}}),
        _entry("a2", "action", "editor", {"tool": "write_file", "args": {"path": "tests/test_profile.py"}}, offset=1),
    ]
    snapshot = SessionSnapshot(session_id="session_1", goal=scenario.initial_goal, flow=[e.to_dict() for e in flow])

    result = SWEEvaluator().evaluate_end_to_end(scenario, snapshot)

    assert result.passed
    assert result.score == 100.0
    assert result.session is snapshot


def test_end_to_end_without_tests_or_docs_loses_maintainability():
    scenario = END_TO_END_SCENARIOS[0]
    flow = [_entry("a1", "action", "editor", {"tool": "write_file", "args": {"path": "api/user.py"}})]
    snapshot = SessionSnapshot(session_id="session_2", flow=[e.to_dict() for e in flow])

    result = SWEEvaluator().evaluate_end_to_end(scenario, snapshot)

    maintainability = [d for d in result.details if d.criterion == "Long-term Maintainability"][0]
    assert maintainability.passed is False
    assert not result.passed


def test_unknown_scenario():
    assert scenario_by_id("nope") is None
