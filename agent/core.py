"""
CoreAgent: the plan -> act -> observe loop.

Flow:
1. Retrieve workspace context for the goal from the vector index
2. Build the system prompt and a flow-aware user prompt
3. Pick a provider/model pair from the injected credential source
4. Call the generation capability with the phase's tools
5. Execute requested tool calls through the router, recording flow entries
6. Fold successes into memory; failures go to telemetry only
7. Checkpoint periodically; stop on a completion signal or the iteration ceiling

The terminal and language server are released on every exit path.
"""

import asyncio
import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from backend import Backend, LocalBackend
from bedrock_service import BedrockError, CredentialError
from codebase_index import (
    IndexResult,
    METADATA_FILE,
    VECTOR_STORE_FILE,
    VectorIndex,
    WorkspaceIndexer,
    load_metadata,
    save_metadata,
)
from config import AppConfig, PROVIDER_LIST, app_config
from credentials import CredentialSource
from sessions import SessionSnapshot, SessionStore, new_session_id
from tools import (
    ACTING,
    PLANNING,
    FileTools,
    HandoverTools,
    LSPTools,
    ShellTools,
    Tool,
    ToolResult,
    ToolRouter,
)
from workspace import InteractiveSession, LanguageSession, ShadowStore, TestSurface

from .context import estimate_messages_tokens, signals_completion, smart_truncate, truncation_level
from .events import AgentStatus, StatusChannel
from .flow import FlowEntry, FlowStore
from .memory import ConversationMemory
from .prompts import PromptFactory

logger = logging.getLogger(__name__)


@dataclass
class AgentContext:
    """Workspace-wide state shared by an agent and every expert it delegates to."""
    workspace: str
    generator: Any
    credentials: CredentialSource
    embed_fn: Optional[Callable[..., Any]] = None
    storage_dir_name: str = ".flowcode"
    providers: List[Dict[str, Any]] = field(default_factory=lambda: list(PROVIDER_LIST))
    shadow: Optional[ShadowStore] = None
    vector_index: Optional[VectorIndex] = None
    sessions: Optional[SessionStore] = None
    backend: Optional[Backend] = None

    def __post_init__(self):
        self.workspace = os.path.abspath(self.workspace)
        if self.shadow is None:
            self.shadow = ShadowStore(self.workspace, self.storage_dir_name)
        if self.vector_index is None:
            self.vector_index = VectorIndex(self.embed_fn)
        if self.sessions is None:
            self.sessions = SessionStore(self.workspace, self.storage_dir_name)
        if self.backend is None:
            self.backend = LocalBackend(self.workspace)

    @property
    def storage_path(self) -> str:
        return os.path.join(self.workspace, self.storage_dir_name)


class CoreAgent:
    """
    Autonomous coding agent bound to one workspace.

    Each instance owns its terminal and language server; the shadow store,
    vector index and session store come from the shared AgentContext.
    """

    def __init__(
        self,
        context: AgentContext,
        persona: Optional[str] = None,
        depth: int = 0,
        config: Optional[AppConfig] = None,
    ):
        self.context = context
        self.persona = persona
        self.depth = depth
        self.config = config or app_config

        self.flow = FlowStore()
        self.memory = ConversationMemory()
        self.test_surface = TestSurface()
        self.prompts = PromptFactory(
            observation_limit=self.config.observation_truncate_chars,
            flow_window=self.config.flow_window,
        )
        self.status = StatusChannel()
        self.terminal = InteractiveSession(context.workspace, settle_seconds=self.config.shell_settle_seconds)
        self.lsp = LanguageSession(context.workspace, command=self.config.lsp_command)

        self.goal = ""
        self.session_id: Optional[str] = None
        self.iterations = 0
        self.metrics: Dict[str, int] = {"input": 0, "output": 0, "pruned": 0, "turns": 0}

        self.router = ToolRouter()
        self._register_tools()

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def _register_tools(self) -> None:
        ctx = self.context
        self.router.register_all(FileTools(ctx.shadow, ctx.backend).get_tools())
        self.router.register_all(ShellTools(
            ctx.backend, self.terminal, self.test_surface, recent_files=self._recently_edited,
        ).get_tools())
        self.router.register_all(LSPTools(self.lsp, ctx.shadow).get_tools())
        self.router.register_all(HandoverTools(
            self._spawn_expert, self.depth, max_depth=self.config.max_delegation_depth,
        ).get_tools())
        self.router.register(Tool(
            name="search_workspace",
            description="Search the codebase using semantic search.",
            parameters={
                "type": "object",
                "properties": {"query": {"type": "string", "description": "Search query"}},
                "required": ["query"],
            },
            handler=self.search_workspace,
            surface="docs",
        ))

    def _spawn_expert(self, persona: str, depth: int) -> "CoreAgent":
        return CoreAgent(self.context, persona=persona, depth=depth, config=self.config)

    def _recently_edited(self) -> List[str]:
        files: List[str] = []
        for entry in self.flow.get_window(lambda e: e.type == "action" and e.surface == "editor", limit=10):
            files.extend(f for f in entry.affects if f not in files)
        return files

    def on_status(self, callback: Callable[[AgentStatus], None]) -> Callable[[], None]:
        """Subscribe to status transitions. Returns an unsubscribe function."""
        return self.status.subscribe(callback)

    def _set_status(self, status: AgentStatus) -> None:
        logger.debug(f"Agent status: {status.value}")
        self.status.publish(status)

    # ------------------------------------------------------------------
    # Workspace indexing
    # ------------------------------------------------------------------

    async def initialize_workspace(self) -> Optional[IndexResult]:
        """Incrementally re-index the workspace. Errors are logged, never raised."""
        self._set_status(AgentStatus.INDEXING)
        vector_path = os.path.join(self.context.storage_path, VECTOR_STORE_FILE)
        metadata_path = os.path.join(self.context.storage_path, METADATA_FILE)
        index = self.context.vector_index
        try:
            logger.info("Starting workspace indexing...")
            index.load(vector_path)
            previous = load_metadata(metadata_path)

            indexer = WorkspaceIndexer(
                self.context.workspace,
                chunk_size=self.config.chunk_size,
                chunk_overlap=self.config.chunk_overlap,
            )
            result = await asyncio.to_thread(indexer.index, previous)

            for path in result.deleted_files:
                index.remove_documents(path)
            for doc in result.changed_documents:
                index.remove_documents(doc.path)
            if result.changed_documents:
                await asyncio.to_thread(index.add_documents, result.changed_documents)
                for path in index.skipped_paths:
                    # Left out of metadata so the next run embeds it again
                    result.metadata.pop(path, None)
                if index.skipped_paths:
                    logger.warning(f"Embedding incomplete for {len(index.skipped_paths)} file(s); they stay pending")

            index.save(vector_path)
            if index.embed_fn is None:
                # Keep changed files pending until an embedding function is available
                logger.warning("No embedding function configured; index metadata not updated")
            else:
                save_metadata(metadata_path, result.metadata)
            logger.info("Workspace indexing complete.")
            return result
        except Exception as e:
            logger.error(f"Error initializing workspace: {e}")
            return None
        finally:
            self._set_status(AgentStatus.IDLE)

    async def search_workspace(self, query: str) -> ToolResult:
        results = await asyncio.to_thread(self.context.vector_index.search, query, self.config.retrieval_top_k)
        if not results:
            return ToolResult(success=True, output="No matching code found.")
        blocks = [f"--- {r.path} (score {r.score:.3f}) ---\n{r.chunk}" for r in results]
        return ToolResult(success=True, output="\n\n".join(blocks))

    async def _retrieve_context(self, goal: str) -> str:
        try:
            results = await asyncio.to_thread(
                self.context.vector_index.search, goal, self.config.retrieval_top_k,
            )
        except Exception as e:
            logger.warning(f"Context retrieval failed: {e}")
            return ""
        return "\n---\n".join(f"# {r.path}\n{r.chunk}" for r in results)

    # ------------------------------------------------------------------
    # Providers
    # ------------------------------------------------------------------

    def _collect_credentials(self) -> Dict[str, str]:
        keys: Dict[str, str] = {}
        for provider in self.context.providers:
            name = provider["name"]
            try:
                secret = self.context.credentials.get_secret(name)
            except Exception as e:
                logger.warning(f"Failed to retrieve credential for {name}: {e}")
                continue
            if secret:
                keys[name] = secret
        return keys

    def _select_provider(self, keys: Dict[str, str]) -> Tuple[str, str]:
        """First provider with a credential, else the last (fallback) entry."""
        providers = self.context.providers
        for provider in providers:
            if provider["name"] in keys:
                return provider["name"], provider["model"]
        fallback = providers[-1]
        return fallback["name"], fallback["model"]

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    async def execute(self, goal: str) -> str:
        """Run the loop for `goal`. Returns the last model text, even on early exit."""
        logger.info(f"Starting loop for goal: {goal[:120]!r} (persona={self.persona}, depth={self.depth})")
        self.goal = goal
        if self.session_id is None:
            self.session_id = new_session_id()
        result_text = ""
        try:
            for iteration in range(1, self.config.max_iterations + 1):
                self.iterations = iteration
                self.metrics["turns"] += 1
                text, done = await self._run_iteration(goal, iteration)
                if text is not None:
                    result_text = text
                if done:
                    break
                if iteration % self.config.checkpoint_interval == 0:
                    self.checkpoint()
        except Exception as e:
            logger.error(f"Agent loop aborted: {e}", exc_info=True)
            self.memory.add("system", f"Error: {e}")
        finally:
            await self._cleanup()
        logger.info(f"Loop finished after {self.iterations} iteration(s)")
        return result_text

    async def _run_iteration(self, goal: str, iteration: int) -> Tuple[Optional[str], bool]:
        """One plan/act/observe pass. Returns (model text or None, stop)."""
        logger.info(f"Iteration {iteration}")
        self._set_status(AgentStatus.PLANNING)
        planning = iteration <= self.config.planning_iterations
        group = PLANNING if planning else ACTING

        context_str = await self._retrieve_context(goal)
        system_prompt = self.prompts.generate_system_prompt(
            persona=self.persona,
            include_workflows=iteration == 1,
            agent_status=group,
        )
        flow_entries = list(self.flow)
        self.metrics["pruned"] = len(flow_entries) - len(self.prompts.prune(flow_entries))
        user_prompt = self.prompts.generate_flow_aware_prompt(
            goal,
            context_str,
            flow_entries,
            test_surface=self.test_surface,
            telemetry=self.memory.get_telemetry(),
        )
        messages = self.memory.get_messages() + [{"role": "user", "content": user_prompt}]
        estimated = estimate_messages_tokens([system_prompt] + [m["content"] for m in messages])
        self._check_token_budget(estimated)

        keys = self._collect_credentials()
        provider, model = self._select_provider(keys)
        offered = {t.name for t in self.router.get_tools(group)}
        try:
            response = await asyncio.to_thread(
                self.context.generator.generate,
                system=system_prompt,
                messages=messages,
                model=model,
                provider=provider,
                credentials=keys,
                tools=self.router.get_tool_definitions(group),
            )
        except CredentialError as e:
            logger.error(f"Credential error from {provider}: {e}")
            self._record_generation_error(e, provider, credential=True, retryable=False)
            return None, True
        except BedrockError as e:
            logger.error(f"Generation error from {provider}: {e}")
            self._record_generation_error(e, provider, credential=False, retryable=e.retryable)
            return None, True
        except Exception as e:
            logger.error(f"Generation error from {provider}: {e}")
            self._record_generation_error(e, provider, credential=False, retryable=True)
            return None, True

        self.metrics["input"] += getattr(response, "input_tokens", 0) or 0
        self.metrics["output"] += getattr(response, "output_tokens", 0) or 0
        text = response.content or ""
        tool_uses = list(response.tool_uses or [])

        self._set_status(AgentStatus.ACTING)
        successes: List[Dict[str, Any]] = []
        for call in tool_uses:
            outcome = await self._run_tool_call(call, offered, estimated)
            if outcome is not None:
                successes.append(outcome)

        self._set_status(AgentStatus.OBSERVING)
        self.memory.add("user", user_prompt)
        self.memory.add("assistant", text or _describe_calls(tool_uses))
        if successes:
            self.memory.add("system", f"Tool Results: {json.dumps(successes)}")

        done = not tool_uses and signals_completion(text)
        return text, done

    async def _run_tool_call(self, call: Any, offered: Set[str], estimated_tokens: int) -> Optional[Dict[str, Any]]:
        """Execute one call. Returns the success record, or None when the call failed."""
        name = call.name
        args = dict(call.input or {})
        tool = self.router.get(name)
        surface = tool.surface if tool else "editor"
        affects = [args["path"]] if isinstance(args.get("path"), str) else []
        action = self.flow.append("action", surface, {"tool": name, "args": args}, affects=affects)

        error: Optional[str] = None
        output = ""
        try:
            if tool is not None and name not in offered:
                raise PermissionError(f"Tool {name} is not available in the current phase")
            result = await self.router.execute_tool(name, args)
            if isinstance(result, ToolResult):
                if result.success:
                    output = result.output
                else:
                    error = result.error or result.output or "Tool reported failure"
            else:
                output = result if isinstance(result, str) else json.dumps(result, default=str)
        except Exception as e:
            error = str(e) or type(e).__name__

        if error is not None:
            self.flow.append(
                "observation", surface, f"Error: {error}",
                caused_by=[action.id], affects=affects, status="error",
            )
            self.memory.record_failure(name, error, call_id=call.id, action_id=action.id)
            return None

        level = truncation_level(estimated_tokens, self.config.context_token_budget)
        output = smart_truncate(output, level)
        self.flow.append(
            "observation", surface, output,
            caused_by=[action.id], affects=affects, status="ok",
        )
        return {"tool_call_id": call.id, "tool": name, "result": output}

    def _record_generation_error(self, error: Exception, provider: str, credential: bool, retryable: bool) -> None:
        self.memory.add("system", f"Error: {error}")
        self.memory.record_telemetry(
            "generation_error", str(error),
            {"provider": provider, "credential": credential, "retryable": retryable},
        )

    def _check_token_budget(self, estimated: int) -> None:
        budget = self.config.context_token_budget
        if estimated > budget * self.config.token_warning_ratio:
            logger.warning(f"Context size ~{estimated} tokens is above {int(self.config.token_warning_ratio * 100)}% of budget {budget}")
            self.memory.record_telemetry("token_warning", f"~{estimated} tokens", {"budget": budget})

    async def _cleanup(self) -> None:
        try:
            await self.terminal.close()
        except Exception as e:
            logger.warning(f"Failed to close terminal session: {e}")
        try:
            await self.lsp.stop()
        except Exception as e:
            logger.warning(f"Failed to stop language server: {e}")
        if self.depth == 0:
            self.checkpoint()
        self._set_status(AgentStatus.IDLE)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def checkpoint(self) -> Optional[str]:
        """Persist goal, flow, test history and metrics. Never raises."""
        if self.context.sessions is None or self.session_id is None:
            return None
        return self.context.sessions.auto_save(
            self.session_id,
            self.goal,
            self.flow.to_dicts(),
            self.test_surface.to_dicts(),
            {
                "tokens": dict(self.metrics),
                "iterations": self.iterations,
                "persona": self.persona,
                "depth": self.depth,
            },
        )

    def restore_session(self, snapshot: SessionSnapshot) -> None:
        """Rebuild flow and test history from a snapshot so its goal can be resumed."""
        self.session_id = snapshot.session_id
        self.goal = snapshot.goal
        self.flow.restore([FlowEntry.from_dict(e) for e in snapshot.flow])
        self.test_surface.restore(snapshot.test_history)
        tokens = (snapshot.metadata or {}).get("tokens") or {}
        for key in self.metrics:
            self.metrics[key] = int(tokens.get(key, 0))
        logger.info(f"Restored session {snapshot.session_id} ({len(self.flow)} flow entries)")

    async def resume(self, session_id: str) -> Optional[str]:
        """Load a session by id and continue its goal. Returns None when not found."""
        snapshot = self.context.sessions.load_session(session_id)
        if snapshot is None:
            logger.warning(f"Session not found: {session_id}")
            return None
        self.restore_session(snapshot)
        return await self.execute(snapshot.goal)

    def intervene(self, content: str, surface: str = "editor") -> FlowEntry:
        """Record a human correction; it is surfaced ahead of the flow narrative."""
        return self.flow.append("human_intervention", surface, content)


def _describe_calls(tool_uses: List[Any]) -> str:
    if not tool_uses:
        return ""
    return "Calling tools: " + ", ".join(t.name for t in tool_uses)
