"""Shared fixtures: a scripted generator, a deterministic embedder, and agent wiring."""

import hashlib
import math
import os
import shlex
import sys
from typing import Any, Dict, List

import pytest

from bedrock_service import GenerationResult, ToolUseBlock
from config import AppConfig
from credentials import StaticCredentials

FIXTURES_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "fixtures")

EMBED_DIM = 32


def fake_embed(texts: List[str], input_type: str = "search_document") -> List[List[float]]:
    """Bag-of-words hashing embedder: texts sharing words get similar vectors."""
    vectors = []
    for text in texts:
        vec = [0.0] * EMBED_DIM
        for word in text.lower().split():
            word = "".join(ch for ch in word if ch.isalnum())
            if not word:
                continue
            slot = int(hashlib.md5(word.encode("utf-8")).hexdigest(), 16) % EMBED_DIM
            vec[slot] += 1.0
        norm = math.sqrt(sum(v * v for v in vec)) or 1.0
        vectors.append([v / norm for v in vec])
    return vectors


def tool_call(name: str, call_id: str = "", **args: Any) -> ToolUseBlock:
    return ToolUseBlock(id=call_id or f"call_{name}", name=name, input=args)


def reply(text: str = "", *calls: ToolUseBlock) -> GenerationResult:
    return GenerationResult(content=text, tool_uses=list(calls), input_tokens=10, output_tokens=5)


class FakeGenerator:
    """Returns scripted responses in order; raises scripted exceptions."""

    def __init__(self, script: List[Any]):
        self.script = list(script)
        self.calls: List[Dict[str, Any]] = []

    def generate(self, system, messages, model, provider, credentials, tools=None):
        self.calls.append({
            "system": system,
            "messages": messages,
            "model": model,
            "provider": provider,
            "credentials": credentials,
            "tools": tools or [],
        })
        if not self.script:
            return reply("Nothing left to do. Task complete.")
        item = self.script.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


@pytest.fixture
def workspace(tmp_path):
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "auth.py").write_text(
        "def login(user, password):\n    return check_password(user, password)\n",
        encoding="utf-8",
    )
    (tmp_path / "README.md").write_text("# Demo\n\nAuthentication service.\n", encoding="utf-8")
    return tmp_path


@pytest.fixture
def agent_config():
    return AppConfig(
        planning_iterations=0,
        shell_settle_seconds=0.1,
        lsp_command=f"{shlex.quote(sys.executable)} {shlex.quote(os.path.join(FIXTURES_DIR, 'fake_lsp.py'))}",
    )


@pytest.fixture
def make_agent(workspace, agent_config):
    """Build a CoreAgent over the workspace with a scripted generator."""
    from agent.core import AgentContext, CoreAgent

    def _make(script, credentials=None, config=None, **context_kwargs):
        generator = FakeGenerator(script)
        context = AgentContext(
            workspace=str(workspace),
            generator=generator,
            credentials=StaticCredentials(credentials if credentials is not None else {"Anthropic": "key"}),
            embed_fn=fake_embed,
            **context_kwargs,
        )
        return CoreAgent(context, config=config or agent_config), generator

    return _make
