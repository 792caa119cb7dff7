"""Main entry point for Loopwright."""

import asyncio
import os
import sys
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.prompt import Prompt
from rich.table import Table

from loopwright.approval import ApprovalRequest, ApprovalResponse
from loopwright.config import Config, set_config
from loopwright.engine import Engine, create_engine
from loopwright.exceptions import LoopwrightError
from loopwright.logging import configure_logging, get_logger
from loopwright.wire import (
    CompactionBegin,
    CompactionEnd,
    ContentPartEvent,
    StepBegin,
    StepInterrupted,
    WireEvent,
)

log = get_logger(__name__)

cli = typer.Typer(help="Loopwright - an autonomous coding agent for your terminal")
console = Console()

_APPROVAL_CHOICES = {
    "y": ApprovalResponse.APPROVE,
    "s": ApprovalResponse.APPROVE_FOR_SESSION,
    "n": ApprovalResponse.REJECT,
}


class WireRenderer:
    """Prints wire events and answers approval requests interactively."""

    def __init__(self, console: Console):
        self.console = console
        self._pending: set[asyncio.Task[None]] = set()

    def __call__(self, event: WireEvent) -> None:
        if isinstance(event, ContentPartEvent):
            self.console.print(escape(event.text), end="", soft_wrap=True)
        elif isinstance(event, StepBegin):
            if event.step_no > 1:
                self.console.print()
            self.console.print(f"[dim]-- step {event.step_no} ({escape(event.agent_name)})[/dim]")
        elif isinstance(event, CompactionBegin):
            self.console.print(f"[yellow]Compacting context ({event.token_count} tokens)...[/yellow]")
        elif isinstance(event, CompactionEnd):
            self.console.print("[yellow]Compaction finished[/yellow]" if event.compacted else "[yellow]Compaction skipped[/yellow]")
        elif isinstance(event, StepInterrupted):
            self.console.print(f"\n[red]Interrupted: {escape(event.error)}[/red]")
        elif isinstance(event, ApprovalRequest):
            task = asyncio.create_task(self._ask(event))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def _ask(self, request: ApprovalRequest) -> None:
        self.console.print(f"\n[bold magenta]Approval needed[/bold magenta] ({escape(request.action)}): {escape(request.description)}")
        loop = asyncio.get_running_loop()
        answer = await loop.run_in_executor(
            None,
            lambda: Prompt.ask("Allow? [y]es / [s]ession / [n]o", choices=list(_APPROVAL_CHOICES), default="y"),
        )
        request.resolve(_APPROVAL_CHOICES[answer])


def _load_config(config_path: str, model: str, provider: str, yolo: bool, verbose: bool) -> Config:
    if verbose:
        os.environ["LOOPWRIGHT_LOGGING__LEVEL"] = "DEBUG"
    cfg = Config.load(Path(config_path) if config_path else None)
    if model:
        cfg.model.model = model
    if provider:
        cfg.model.provider = provider
    if yolo:
        cfg.approval.yolo = True
    set_config(cfg)
    configure_logging(cfg, verbose=verbose)
    return cfg


def _render_status(engine: Engine) -> None:
    table = Table(title="Session status", show_header=False)
    for key, value in engine.get_status().items():
        table.add_row(key.replace("_", " "), str(value))
    console.print(table)


async def _run_session(cfg: Config, prompt: str, work_dir: Path, agent_file: str, continue_session: bool) -> None:
    engine = await create_engine(
        work_dir=work_dir,
        config=cfg,
        agent_file=agent_file or None,
        continue_session=continue_session,
    )
    engine.wire.subscribe(WireRenderer(console))
    try:
        if prompt:
            reason = await engine.run(prompt)
            console.print()
            log.info("Run finished", reason=reason.value)
            return

        console.print("[bold]Loopwright[/bold] - type /status for session info, /exit to quit")
        loop = asyncio.get_running_loop()
        while True:
            user_input = (await loop.run_in_executor(None, lambda: Prompt.ask("\n[bold cyan]>[/bold cyan]"))).strip()
            if not user_input:
                continue
            if user_input in {"/exit", "/quit"}:
                break
            if user_input == "/status":
                _render_status(engine)
                continue
            await engine.run(user_input)
            console.print()
    finally:
        await engine.close()
        await engine.runtime.provider.close()


@cli.command()
def run(
    prompt: str = typer.Argument("", help="Task to run; starts an interactive session when omitted"),
    config: str = typer.Option("", "-c", "--config", help="Path to config file"),
    work_dir: Path = typer.Option(Path.cwd(), "-w", "--work-dir", help="Working directory for the agent"),
    agent_file: str = typer.Option("", "-a", "--agent-file", help="Custom agent.yaml"),
    model: str = typer.Option("", "-m", "--model", help="Override model"),
    provider: str = typer.Option("", "-p", "--provider", help="Override provider"),
    continue_session: bool = typer.Option(False, "-C", "--continue", help="Continue the latest session for this work dir"),
    yolo: bool = typer.Option(False, "-y", "--yolo", help="Approve every action automatically"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Debug logging"),
) -> None:
    """Run the agent on a task or interactively."""
    cfg = _load_config(config, model, provider, yolo, verbose)
    try:
        asyncio.run(_run_session(cfg, prompt, work_dir.expanduser().resolve(), agent_file, continue_session))
    except KeyboardInterrupt:
        log.info("Shutting down...")
        sys.exit(0)
    except LoopwrightError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        sys.exit(1)


@cli.command()
def status(
    config: str = typer.Option("", "-c", "--config", help="Path to config file"),
    work_dir: Path = typer.Option(Path.cwd(), "-w", "--work-dir", help="Working directory"),
) -> None:
    """Show the status of the latest session for a work dir."""
    cfg = _load_config(config, "", "", False, False)

    async def _show() -> None:
        engine = await create_engine(work_dir=work_dir.expanduser().resolve(), config=cfg, continue_session=True)
        try:
            _render_status(engine)
        finally:
            await engine.close()
            await engine.runtime.provider.close()

    asyncio.run(_show())


@cli.command()
def version() -> None:
    """Show version information."""
    from loopwright import __version__

    console.print(f"Loopwright v{__version__}")


if __name__ == "__main__":
    cli()
