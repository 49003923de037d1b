"""
Flowcode - an autonomous coding agent powered by Amazon Bedrock.
Command-line driver: index a workspace, run a goal, or resume a session.
"""

import asyncio
import argparse
import logging
import os
import sys
from datetime import datetime

from rich.console import Console
from rich.markup import escape as rich_escape
from rich.panel import Panel
from rich.table import Table

from agent import AgentContext, AgentStatus, CoreAgent
from bedrock_service import BedrockService
from config import app_config, aws_config, get_credentials_info
from credentials import EnvVault
from sessions import SessionStore

logger = logging.getLogger(__name__)

console = Console()

STATUS_STYLES = {
    AgentStatus.IDLE: "#6e7681",
    AgentStatus.INDEXING: "#8957e5",
    AgentStatus.PLANNING: "#58a6ff",
    AgentStatus.ACTING: "#e3b341",
    AgentStatus.OBSERVING: "#3fb950",
}


def _print_status(status: AgentStatus) -> None:
    console.print(f"   [{STATUS_STYLES.get(status, 'white')}]● {status.value}[/]")


def _print_sessions(store: SessionStore) -> None:
    sessions = store.list_sessions()
    if not sessions:
        console.print("[#6e7681]No saved sessions.[/#6e7681]")
        return
    table = Table(title="Saved sessions", show_lines=False)
    table.add_column("Session", style="#58a6ff")
    table.add_column("Saved", style="#8b949e")
    table.add_column("Goal")
    for s in sessions:
        saved = datetime.fromtimestamp(s.timestamp).strftime("%Y-%m-%d %H:%M")
        table.add_row(s.session_id, saved, rich_escape(s.goal[:80]))
    console.print(table)


def build_agent(working_dir: str, persona=None) -> CoreAgent:
    service = BedrockService(region=aws_config.region)
    context = AgentContext(
        workspace=working_dir,
        generator=service,
        credentials=EnvVault(os.path.join(working_dir, ".env")),
        embed_fn=service.embed_texts,
        storage_dir_name=app_config.storage_dir_name,
    )
    return CoreAgent(context, persona=persona)


async def run(args) -> int:
    working_dir = os.path.abspath(args.directory)
    agent = build_agent(working_dir, persona=args.persona)
    agent.on_status(_print_status)

    if args.list_sessions:
        _print_sessions(agent.context.sessions)
        return 0

    console.print(f"[bold]{app_config.title}[/bold] [#6e7681]{rich_escape(working_dir)}[/#6e7681]")
    console.print(f"[#6e7681]{get_credentials_info()}[/#6e7681]")

    result = await agent.initialize_workspace()
    if result is not None:
        console.print(
            f"   [#8b949e]indexed {len(result.metadata)} files, "
            f"{len(result.changed_documents)} changed, {len(result.deleted_files)} deleted[/#8b949e]"
        )
    if args.index_only:
        return 0

    if args.resume:
        text = await agent.resume(args.resume)
        if text is None:
            console.print(f"[bold #f85149]✗ Session not found: {rich_escape(args.resume)}[/bold #f85149]")
            return 1
    elif args.goal:
        text = await agent.execute(args.goal)
    else:
        console.print("[bold #f85149]✗ No goal given[/bold #f85149] (pass a goal, --resume or --index-only)")
        return 2

    agent.context.sessions.cleanup_old_sessions(app_config.session_keep)
    console.print(Panel(rich_escape(text or "(no response)"), title=f"Result · {agent.session_id}"))
    return 0


# ============================================================
# Entry Point
# ============================================================

def main():
    parser = argparse.ArgumentParser(
        description="Flowcode - Autonomous Coding Agent",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  flowcode "add input validation to the signup form"
  flowcode -d ~/my-project --index-only
  flowcode --list-sessions
  flowcode --resume session_1712345678901
        """,
    )
    parser.add_argument("goal", nargs="?", help="Natural-language goal for the agent")
    parser.add_argument(
        "-d", "--directory",
        default=app_config.working_directory,
        help="Workspace directory (default: current directory)",
    )
    parser.add_argument(
        "--persona",
        choices=["researcher", "reviewer", "coder"],
        help="Run the root agent with an expert persona",
    )
    parser.add_argument("--index-only", action="store_true", help="Index the workspace and exit")
    parser.add_argument("--resume", metavar="SESSION_ID", help="Resume a saved session")
    parser.add_argument("--list-sessions", action="store_true", help="List saved sessions and exit")
    parser.add_argument("--log-level", default=app_config.log_level, help="Logging level (default: %(default)s)")

    args = parser.parse_args()

    if not os.path.isdir(args.directory):
        console.print(f"Error: {args.directory} is not a directory")
        sys.exit(1)

    logging.basicConfig(
        filename=os.path.join(os.path.abspath(args.directory), "flowcode.log"),
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
