"""
Workspace-side resources owned by an agent: staged files, the interactive
shell, the language server, and the test surface.
"""

from workspace.shadow import ShadowStore
from workspace.interactive import InteractiveSession, ProcessNotRunning
from workspace.lsp import LanguageSession, LanguageServerError
from workspace.testbench import TestSurface, TestResult, FailureAnalysis

__all__ = [
    "ShadowStore",
    "InteractiveSession",
    "ProcessNotRunning",
    "LanguageSession",
    "LanguageServerError",
    "TestSurface",
    "TestResult",
    "FailureAnalysis",
]
