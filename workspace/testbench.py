"""
Test surface: tracks test runs over time and correlates failures with the
file-affecting actions that preceded them.
"""

import logging
import re
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

# pytest: "=== 2 failed, 5 passed in 0.12s ==="
_PYTEST_COUNT_RE = re.compile(r"(\d+)\s+(passed|failed|error|errors)\b")
_PYTEST_DURATION_RE = re.compile(r"\bin\s+([\d.]+)s\b")
_PYTEST_FAILED_RE = re.compile(r"^(?:FAILED|ERROR)\s+(\S+)", re.MULTILINE)
# vitest: "Tests  3 passed | 1 failed (4)", "Duration  1.20s"
_VITEST_PASSED_RE = re.compile(r"Tests\s+(?:\d+\s+failed\s*\|\s*)?(\d+)\s+passed")
_VITEST_FAILED_RE = re.compile(r"Tests\s+(\d+)\s+failed")
_VITEST_DURATION_RE = re.compile(r"Duration\s+([\d.]+)\s*s")
_VITEST_FAILED_NAME_RE = re.compile(r"^\s*(?:×|✗|❌|FAIL)\s+(.+?)\s*$", re.MULTILINE)


@dataclass
class TestResult:
    __test__ = False  # not a pytest test class

    id: str
    command: str
    timestamp: float = field(default_factory=time.time)
    status: str = "running"  # running | passed | failed
    total_tests: int = 0
    passed_tests: int = 0
    failed_tests: int = 0
    failed_test_names: List[str] = field(default_factory=list)
    duration: Optional[float] = None
    output: str = ""
    related_files: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "command": self.command,
            "status": self.status,
            "totalTests": self.total_tests,
            "passedTests": self.passed_tests,
            "failedTests": self.failed_tests,
            "failedTestNames": self.failed_test_names,
            "duration": self.duration,
            "output": self.output,
            "relatedFiles": self.related_files,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TestResult":
        return cls(
            id=data.get("id", ""),
            command=data.get("command", ""),
            timestamp=data.get("timestamp", 0),
            status=data.get("status", "passed"),
            total_tests=data.get("totalTests", 0),
            passed_tests=data.get("passedTests", 0),
            failed_tests=data.get("failedTests", 0),
            failed_test_names=data.get("failedTestNames") or [],
            duration=data.get("duration"),
            output=data.get("output", ""),
            related_files=data.get("relatedFiles") or [],
        )


@dataclass
class FailureAnalysis:
    test_name: str
    possible_causes: List[str] = field(default_factory=list)
    affected_files: List[str] = field(default_factory=list)


_UPDATABLE = {f for f in TestResult.__dataclass_fields__ if f not in ("id", "timestamp", "command")}


class TestSurface:
    """Single in-flight test run plus the history of completed runs."""

    __test__ = False

    def __init__(self):
        self._history: List[TestResult] = []
        self._current: Optional[TestResult] = None

    def start_test(self, command: str, related_files: Optional[List[str]] = None) -> TestResult:
        if self._current is not None:
            logger.warning(f"Abandoning unfinished test run {self._current.id}")
            self.abandon_test()
        self._current = TestResult(
            id=uuid.uuid4().hex[:12],
            command=command,
            related_files=list(related_files or []),
        )
        return self._current

    def update_test(self, **changes: Any) -> TestResult:
        if self._current is None:
            raise RuntimeError("No active test to update")
        for key, value in changes.items():
            if key not in _UPDATABLE:
                raise TypeError(f"Unknown test result field: {key}")
            setattr(self._current, key, value)
        return self._current

    def complete_test(self, **final: Any) -> TestResult:
        """Apply the final update, settle the status, and move the run into history."""
        result = self.update_test(**final)
        if result.status == "running":
            result.status = "failed" if result.failed_tests > 0 else "passed"
        self._current = None
        self._history.append(result)
        logger.info(
            f"Test run {result.id} {result.status}: "
            f"{result.passed_tests} passed, {result.failed_tests} failed"
        )
        return result

    def abandon_test(self) -> Optional[TestResult]:
        """Drop the in-flight run without recording it."""
        current, self._current = self._current, None
        return current

    def parse_test_output(self, output: str) -> Dict[str, Any]:
        """Extract counts, duration, and failed test names from pytest or vitest output."""
        parsed: Dict[str, Any] = {"output": output}

        passed = failed = None
        vitest_passed = _VITEST_PASSED_RE.search(output)
        vitest_failed = _VITEST_FAILED_RE.search(output)
        if vitest_passed or vitest_failed:
            passed = int(vitest_passed.group(1)) if vitest_passed else 0
            failed = int(vitest_failed.group(1)) if vitest_failed else 0
            duration = _VITEST_DURATION_RE.search(output)
            names = [m.strip() for m in _VITEST_FAILED_NAME_RE.findall(output)]
        else:
            counts = {}
            summary = [line for line in output.splitlines() if _PYTEST_COUNT_RE.search(line)]
            for num, kind in _PYTEST_COUNT_RE.findall(summary[-1] if summary else ""):
                kind = "failed" if kind.startswith("error") or kind == "failed" else kind
                counts[kind] = counts.get(kind, 0) + int(num)
            if counts:
                passed = counts.get("passed", 0)
                failed = counts.get("failed", 0)
            duration = _PYTEST_DURATION_RE.search(output)
            names = _PYTEST_FAILED_RE.findall(output)

        if passed is not None:
            parsed["passed_tests"] = passed
            parsed["failed_tests"] = failed
            parsed["total_tests"] = passed + failed
        if duration:
            parsed["duration"] = float(duration.group(1))
        if names:
            parsed["failed_test_names"] = names
        return parsed

    def analyze_failures(self, flow_entries: List[Any], recent: int = 10) -> List[FailureAnalysis]:
        """Correlate the last failing run with the most recent editor actions."""
        last = self.get_last_test()
        if not last or last.status != "failed" or not last.failed_test_names:
            return []
        changes = [
            e for e in flow_entries
            if getattr(e, "type", None) == "action" and getattr(e, "surface", None) == "editor"
        ][-recent:]
        files: List[str] = []
        for change in changes:
            files.extend(change.affects or [])
            content = change.content if isinstance(change.content, dict) else {}
            path = (content.get("args") or {}).get("path")
            if path:
                files.append(path)
        affected = list(dict.fromkeys(files))
        causes = [c.id for c in changes]
        return [
            FailureAnalysis(test_name=name, possible_causes=list(causes), affected_files=list(affected))
            for name in last.failed_test_names
        ]

    def get_last_test(self) -> Optional[TestResult]:
        return self._history[-1] if self._history else None

    def get_history(self, limit: Optional[int] = None) -> List[TestResult]:
        if limit:
            return list(self._history[-limit:])
        return list(self._history)

    def get_current_test(self) -> Optional[TestResult]:
        return self._current

    def is_running(self) -> bool:
        return self._current is not None

    def get_tension_summary(self) -> Optional[str]:
        last = self.get_last_test()
        if not last or last.status != "failed":
            return None
        names = ", ".join(last.failed_test_names[:3]) or "unknown tests"
        more = "..." if len(last.failed_test_names) > 3 else ""
        return f"{last.failed_tests} test(s) failing: {names}{more}"

    def restore(self, history: List[Dict[str, Any]]) -> None:
        self._history = [TestResult.from_dict(d) for d in history]
        self._current = None

    def to_dicts(self) -> List[Dict[str, Any]]:
        return [r.to_dict() for r in self._history]

    def clear(self) -> None:
        self._history = []
        self._current = None
