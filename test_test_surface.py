import pytest

from agent.flow import FlowStore
from workspace.testbench import TestSurface

PYTEST_OUTPUT = """\
collected 3 items

test_auth.py ..F                                                    [100%]

FAILED test_auth.py::test_login_rejects_bad_password - AssertionError
========================= 1 failed, 2 passed in 0.31s =========================
"""

VITEST_OUTPUT = """\
 ✓ src/billing.test.ts (2)
 × auth > rejects bad password

 Test Files  1 failed | 1 passed (2)
      Tests  1 failed | 3 passed (4)
   Duration  1.20s
"""


def test_lifecycle_moves_run_into_history():
    surface = TestSurface()
    run = surface.start_test("pytest -q", related_files=["src/auth.py"])
    assert surface.is_running()
    assert surface.get_current_test() is run

    surface.update_test(output="partial")
    done = surface.complete_test(passed_tests=3, failed_tests=0, total_tests=3)

    assert done.status == "passed"
    assert not surface.is_running()
    assert surface.get_last_test() is done
    assert surface.get_history() == [done]


def test_update_without_active_run_raises():
    with pytest.raises(RuntimeError):
        TestSurface().update_test(output="x")


def test_unknown_field_rejected():
    surface = TestSurface()
    surface.start_test("pytest")
    with pytest.raises(TypeError):
        surface.update_test(command="other")


def test_starting_again_abandons_previous_run():
    surface = TestSurface()
    first = surface.start_test("pytest a")
    second = surface.start_test("pytest b")

    assert surface.get_current_test() is second
    assert first is not second
    assert surface.get_history() == []


def test_abandon_drops_run():
    surface = TestSurface()
    surface.start_test("pytest")
    assert surface.abandon_test() is not None
    assert surface.abandon_test() is None
    assert surface.get_history() == []


def test_parse_pytest_summary():
    parsed = TestSurface().parse_test_output(PYTEST_OUTPUT)
    assert parsed["passed_tests"] == 2
    assert parsed["failed_tests"] == 1
    assert parsed["total_tests"] == 3
    assert parsed["duration"] == 0.31
    assert parsed["failed_test_names"] == ["test_auth.py::test_login_rejects_bad_password"]


def test_parse_vitest_summary():
    parsed = TestSurface().parse_test_output(VITEST_OUTPUT)
    assert parsed["passed_tests"] == 3
    assert parsed["failed_tests"] == 1
    assert parsed["total_tests"] == 4
    assert parsed["duration"] == 1.2
    assert parsed["failed_test_names"] == ["auth > rejects bad password"]


def test_parse_unrecognised_output_only_keeps_text():
    assert TestSurface().parse_test_output("segmentation fault") == {"output": "segmentation fault"}


def _failing_surface():
    surface = TestSurface()
    surface.start_test("pytest")
    surface.complete_test(**surface.parse_test_output(PYTEST_OUTPUT))
    return surface


def test_tension_summary_only_for_failures():
    surface = TestSurface()
    assert surface.get_tension_summary() is None

    surface = _failing_surface()
    assert surface.get_tension_summary() == "1 test(s) failing: test_auth.py::test_login_rejects_bad_password"


def test_analyze_failures_links_recent_edits():
    flow = FlowStore()
    flow.append("action", "terminal", {"tool": "run_command", "args": {"command": "ls"}})
    edit = flow.append("action", "editor", {"tool": "write_file", "args": {"path": "src/auth.py"}})

    analyses = _failing_surface().analyze_failures(flow.get_window())

    assert len(analyses) == 1
    assert analyses[0].test_name == "test_auth.py::test_login_rejects_bad_password"
    assert analyses[0].possible_causes == [edit.id]
    assert analyses[0].affected_files == ["src/auth.py"]


def test_analyze_failures_empty_when_passing():
    surface = TestSurface()
    surface.start_test("pytest")
    surface.complete_test(passed_tests=1, failed_tests=0)
    assert surface.analyze_failures([]) == []


def test_history_restore_round_trip():
    surface = _failing_surface()
    dumped = surface.to_dicts()

    restored = TestSurface()
    restored.restore(dumped)

    assert restored.to_dicts() == dumped
    assert restored.get_last_test().failed_test_names == ["test_auth.py::test_login_rejects_bad_password"]
    assert dumped[0]["failedTests"] == 1
