"""Command-line entry point for the agent."""

import logging
import os
import time
from pathlib import Path

import typer
from prompt_toolkit import PromptSession
from prompt_toolkit.completion import CompleteEvent, Completer, Completion
from prompt_toolkit.document import Document
from prompt_toolkit.formatted_text import HTML
from prompt_toolkit.key_binding import KeyBindings
from prompt_toolkit.keys import Keys
from prompt_toolkit.shortcuts import CompleteStyle
from prompt_toolkit.styles import Style
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from config.settings import configure_workspace_root, settings
from deo import __version__
from deo.agent.events import AgentEvent, EventKind
from deo.agent.loop import AgentLoop, TurnResult
from deo.agent.modes import LoopMode, get_mode_by_name, get_mode_config, get_next_mode, list_modes
from deo.agent.state import TurnState
from deo.errors import TurnInProgressError
from deo.llm.local import LocalLLM
from deo.sessions.kv import JsonFileKeyValueStore
from deo.sessions.models import MessageRole
from deo.sessions.store import SessionStore
from deo.tools.editor import FileEditTarget
from deo.tools.executor import ActionExecutor

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="deo",
    help="Local-model coding agent that edits files inside a workspace",
)
console = Console()


@app.callback()
def _configure(
    workspace: Path | None = typer.Option(
        None,
        "--workspace",
        "-w",
        help="Workspace root the agent may read and write (defaults to cwd if not set).",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show agent logs."),
) -> None:
    """Configure the workspace root and logging for CLI runs."""
    root = workspace
    if root is None:
        if os.getenv("WORKSPACE_ROOT") and settings.workspace_root:
            root = settings.workspace_root
        else:
            root = Path.cwd()
    configure_workspace_root(root)

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


def _get_mode_color(mode: LoopMode) -> str:
    """Get the display color for a mode."""
    colors = {
        LoopMode.ITERATIVE: "bright_magenta",
        LoopMode.SINGLE_SHOT: "yellow",
    }
    return colors.get(mode, "white")


def _get_prompt_color(mode: LoopMode) -> str:
    """Get a prompt_toolkit-safe color for a mode."""
    colors = {
        LoopMode.ITERATIVE: "ansibrightmagenta",
        LoopMode.SINGLE_SHOT: "ansiyellow",
    }
    return colors.get(mode, "ansiwhite")


def _render_event(event: AgentEvent) -> None:
    """Print one agent event as it arrives."""
    if event.kind is EventKind.STATUS:
        console.print(f"[dim]{event.text}[/dim]")
    elif event.kind is EventKind.PLAN:
        console.print(Panel(event.text, title="Plan", border_style="cyan"))
    elif event.kind is EventKind.PROGRESS:
        target = event.path or "editor"
        if event.success:
            console.print(f"[green]✓[/green] {event.action} [cyan]{target}[/cyan]")
        else:
            console.print(f"[red]✗[/red] {event.action} [cyan]{target}[/cyan] [dim]{event.text}[/dim]")
    elif event.kind is EventKind.SUMMARY:
        console.print(Panel(event.text, title="Summary", border_style="green"))
    elif event.kind is EventKind.ERROR:
        console.print(Panel(event.text, title="Error", border_style="red"))


def _build_loop(insert_into: Path | None = None, model: str | None = None) -> AgentLoop:
    """Wire the store, inference client and executor for the configured workspace."""
    store = SessionStore(JsonFileKeyValueStore(settings.sessions_path))
    edit_target = FileEditTarget(insert_into) if insert_into else None
    executor = ActionExecutor(settings.workspace_root, edit_target=edit_target)
    return AgentLoop(
        store,
        llm=LocalLLM(model=model),
        executor=executor,
        event_callback=_render_event,
    )


def _run_request(loop: AgentLoop, request: str, mode: LoopMode | None = None) -> TurnResult | None:
    start = time.perf_counter()
    try:
        result = loop.run(request, mode=mode)
    except TurnInProgressError as e:
        console.print(f"[yellow]{e}[/yellow]")
        return None
    except Exception as e:
        logger.debug("Request failed", exc_info=True)
        console.print(f"[red]Error:[/red] {e}")
        return None
    elapsed = time.perf_counter() - start
    console.print(
        f"[dim]{result.status.value} after {result.steps_executed} step(s) in {elapsed:.1f}s[/dim]"
    )
    return result


def _print_sessions(store: SessionStore) -> None:
    table = Table(title="Sessions")
    table.add_column("#", style="dim")
    table.add_column("Title", style="cyan")
    table.add_column("Messages", justify="right")
    table.add_column("Created", style="dim")
    for index, entry in enumerate(store.summary(), 1):
        marker = "[green]*[/green] " if entry["active"] else "  "
        created = time.strftime("%Y-%m-%d %H:%M", time.localtime(entry["created_at"]))
        table.add_row(str(index), marker + entry["title"], str(entry["message_count"]), created)
    console.print(table)


def _print_history(store: SessionStore) -> None:
    session = store.active
    if not session.messages:
        console.print("[dim]No messages yet.[/dim]")
        return
    for message in session.messages:
        if message.role is MessageRole.USER:
            console.print(f"[bold cyan]You:[/bold cyan] {message.text}")
        elif message.role is MessageRole.AI:
            console.print(f"[bold green]Deo:[/bold green] {message.text}")
        else:
            mark = "[green]✓[/green]" if message.success else "[red]✗[/red]"
            console.print(f"  {mark} {message.action} {message.path or 'editor'}")


def _interactive_model_selector(llm: LocalLLM) -> str | None:
    """Numbered model menu."""
    models = llm.list_available_models()
    current = llm.get_model()

    if not models:
        console.print("[yellow]No models found. Is Ollama running?[/yellow]")
        return None

    console.print("\n[bold]Available Ollama Models:[/bold]")
    for i, model in enumerate(models, 1):
        marker = "[green]*[/green]" if model == current else " "
        console.print(f"{marker} {i:2}. {model}")

    console.print("\n[dim]Enter number to select, or press Enter to cancel[/dim]")
    choice = console.input("[bold cyan]Select model[/bold cyan]: ")

    if not choice.strip():
        return None
    try:
        idx = int(choice) - 1
    except ValueError:
        console.print("[yellow]Invalid input[/yellow]")
        return None
    if 0 <= idx < len(models):
        return models[idx]
    console.print("[yellow]Invalid selection[/yellow]")
    return None


HELP_TEXT = (
    "Commands:\n"
    "  /new            - Start a new session\n"
    "  /sessions       - List sessions\n"
    "  /switch <n>     - Switch to session number n (or id)\n"
    "  /history        - Show the active session's messages\n"
    "  /mode           - Show current loop mode\n"
    "  /mode <name>    - Switch loop mode (iterative, single_shot, next)\n"
    "  /modes          - List loop modes\n"
    "  /model          - Show current model\n"
    "  /model <name>   - Switch to a different model\n"
    "  /models         - Pick from installed Ollama models\n"
    "  /help           - Show this help message\n"
    "  /quit           - Exit\n\n"
    "Shift+Tab cycles the loop mode. Tab completes commands.\n"
    "Anything else is sent to the agent as a request."
)


MODE_SWITCH = "__MODE_SWITCH__"

COMMAND_META = {
    "/new": "Start a new session",
    "/sessions": "List sessions",
    "/switch": "Switch session: /switch <n>",
    "/history": "Show the active session's messages",
    "/mode": "Show or set mode: /mode <name>",
    "/modes": "List loop modes",
    "/model": "Show current model or switch: /model <name>",
    "/models": "Pick from installed Ollama models",
    "/help": "Show help and command reference",
    "/quit": "Exit the chat",
}

COMPLETION_STYLE = Style.from_dict(
    {
        "completion.menu.completion": "fg:#7a7a7a",
        "completion.menu.completion.current": "bg:#444444 fg:#ffffff",
        "completion.scrollbar": "bg:#333333",
    }
)


class SlashCompleter(Completer):
    """Completes slash commands, mode names and installed model names."""

    def __init__(self, loop: AgentLoop) -> None:
        self._loop = loop
        self._models: list[str] | None = None

    def _model_names(self) -> list[str]:
        if self._models is None:
            self._models = self._loop.llm.list_available_models()
        return self._models

    def get_completions(self, document: Document, complete_event: CompleteEvent):
        text = document.text_before_cursor
        if not text.startswith("/"):
            return
        parts = text.split()
        has_trailing_space = text.endswith(" ")
        prefix = "" if has_trailing_space else parts[-1]

        # Command name completion
        if len(parts) == 1 and not has_trailing_space:
            for cmd, meta in COMMAND_META.items():
                if cmd.startswith(prefix):
                    yield Completion(cmd, start_position=-len(prefix), display_meta=meta)
            return

        command = parts[0]
        if command == "/mode":
            for mode, description in list_modes():
                if mode.value.startswith(prefix):
                    yield Completion(mode.value, start_position=-len(prefix), display_meta=description)
        elif command == "/model":
            for name in self._model_names():
                if name.startswith(prefix):
                    yield Completion(name, start_position=-len(prefix))


def _create_key_bindings(loop: AgentLoop) -> KeyBindings:
    bindings = KeyBindings()

    @bindings.add(Keys.BackTab)  # Shift+Tab
    def _(event):
        """Cycle to the next loop mode."""
        loop.set_mode(get_next_mode(loop.get_mode()))
        event.app.exit(result=MODE_SWITCH)

    return bindings


def _create_prompt_session(loop: AgentLoop) -> PromptSession:
    """Create a prompt_toolkit session with line history, completion and mode cycling."""
    return PromptSession(
        key_bindings=_create_key_bindings(loop),
        completer=SlashCompleter(loop),
        complete_while_typing=True,
        complete_style=CompleteStyle.MULTI_COLUMN,
        style=COMPLETION_STYLE,
    )


def _handle_command(command: str, loop: AgentLoop) -> bool:
    """
    Handle a REPL command.

    Returns True to continue, False to exit.
    """
    cmd = command.strip()
    cmd_lower = cmd.lower()
    store = loop.store

    if cmd_lower in ("/quit", "/exit", "/q"):
        return False

    if cmd_lower == "/new":
        session = store.new_session()
        console.print(f"[green]Started new session {session.id}[/green]")
        return True

    if cmd_lower == "/sessions":
        _print_sessions(store)
        return True

    if cmd_lower.startswith("/switch"):
        target = cmd[7:].strip()
        if not target:
            console.print("[yellow]Usage: /switch <n>[/yellow]")
            return True
        sessions = store.list_sessions()
        session_id = target
        if target.isdigit() and 1 <= int(target) <= len(sessions):
            session_id = sessions[int(target) - 1].id
        try:
            session = store.set_active(session_id)
        except KeyError:
            console.print(f"[yellow]No session '{target}'. Use /sessions to list them.[/yellow]")
            return True
        console.print(f"[green]Switched to:[/green] {session.title}")
        return True

    if cmd_lower == "/history":
        _print_history(store)
        return True

    if cmd_lower == "/mode":
        current_mode = loop.get_mode()
        mode_config = get_mode_config(current_mode)
        mode_color = _get_mode_color(current_mode)
        console.print(f"Current mode: [{mode_color}]{current_mode.value}[/{mode_color}]")
        console.print(f"Description: {mode_config.description}")
        console.print(f"Temperature: {mode_config.temperature}")
        return True

    if cmd_lower.startswith("/mode "):
        mode_name = cmd[6:].strip()
        if mode_name.lower() == "next":
            mode_enum = get_next_mode(loop.get_mode())
        else:
            mode_enum = get_mode_by_name(mode_name)
        if mode_enum is None:
            console.print(f"[yellow]Unknown mode: {mode_name}[/yellow]")
            console.print("Use /modes to see available modes.")
            return True
        loop.set_mode(mode_enum)
        mode_color = _get_mode_color(mode_enum)
        console.print(
            f"[{mode_color}]→ {mode_enum.value}[/{mode_color}] "
            f"[dim]{get_mode_config(mode_enum).description}[/dim]"
        )
        return True

    if cmd_lower == "/modes":
        current_mode = loop.get_mode()
        for mode, description in list_modes():
            mode_color = _get_mode_color(mode)
            marker = "*" if mode == current_mode else " "
            console.print(f"  [{mode_color}]{marker} {mode.value:12}[/{mode_color}] - {description}")
        return True

    if cmd_lower == "/models":
        selected = _interactive_model_selector(loop.llm)
        if selected:
            loop.llm.set_model(selected)
            console.print(f"[green]Switched to model: {selected}[/green]")
        return True

    if cmd_lower == "/model":
        console.print(f"Current model: [cyan]{loop.llm.get_model()}[/cyan]")
        return True

    if cmd_lower.startswith("/model "):
        model_name = cmd[7:].strip()
        available = loop.llm.list_available_models()
        if available and model_name not in available:
            # Partial match, e.g. "qwen" for "qwen2.5:latest"
            matches = [m for m in available if model_name in m]
            if len(matches) == 1:
                model_name = matches[0]
            elif matches:
                console.print(f"[yellow]Ambiguous model name. Did you mean one of: {', '.join(matches)}?[/yellow]")
                return True
            else:
                console.print(f"[yellow]Model '{model_name}' not found. Use /models to see available models.[/yellow]")
                return True
        loop.llm.set_model(model_name)
        console.print(f"[green]Switched to model: {model_name}[/green]")
        return True

    if cmd_lower == "/help":
        console.print(Panel(HELP_TEXT, title="Help"))
        return True

    console.print(f"[yellow]Unknown command: {command}[/yellow]")
    return True


def _parse_mode(mode: str | None) -> LoopMode | None:
    if not mode:
        return None
    mode_enum = get_mode_by_name(mode)
    if mode_enum is None:
        console.print(f"[yellow]Unknown mode '{mode}', using default[/yellow]")
    return mode_enum


@app.command()
def chat(
    mode: str = typer.Option(None, "--mode", "-m", help="Initial loop mode (iterative, single_shot)"),
    model: str = typer.Option(None, "--model", help="Ollama model to use"),
    insert_into: Path = typer.Option(None, "--insert-into", help="File that receives insert_code actions"),
) -> None:
    """Start an interactive chat session with the agent."""
    loop = _build_loop(insert_into=insert_into, model=model)
    mode_enum = _parse_mode(mode)
    if mode_enum:
        loop.set_mode(mode_enum)

    if not loop.llm.check_availability():
        console.print(
            "[yellow]Warning:[/yellow] Ollama is not available. "
            f"Ensure Ollama is running at {settings.ollama_base_url}"
        )

    current_mode = loop.get_mode()
    mode_color = _get_mode_color(current_mode)
    console.print(
        Panel(
            f"[bold cyan]Deo[/bold cyan] [dim]v{__version__}[/dim]\n"
            f"Workspace: [green]{settings.workspace_root}[/green]\n"
            f"Session:   {loop.store.active.title}\n"
            f"Mode:      [{mode_color}]{current_mode.value}[/{mode_color}]\n\n"
            "Type /help for commands.",
            title="Welcome",
        )
    )

    last_interrupt_time = 0.0
    prompt_session = _create_prompt_session(loop)

    while True:
        try:
            current_mode = loop.get_mode()
            prompt_color = _get_prompt_color(current_mode)
            user_input = prompt_session.prompt(
                HTML(f'<b><style fg="{prompt_color}">[{current_mode.value}]</style></b> > ')
            )

            if user_input == MODE_SWITCH:
                new_mode = loop.get_mode()
                mode_color = _get_mode_color(new_mode)
                console.print(
                    f"[{mode_color}]→ {new_mode.value}[/{mode_color}] "
                    f"[dim]{get_mode_config(new_mode).description}[/dim]"
                )
                continue

            if not user_input.strip():
                continue
            if user_input.startswith("/"):
                if _handle_command(user_input, loop):
                    continue
                break

            _run_request(loop, user_input)

        except KeyboardInterrupt:
            current_time = time.time()
            if current_time - last_interrupt_time < 2.0:
                console.print("\n")
                break
            last_interrupt_time = current_time
            console.print("\n[yellow]Press Ctrl+C again to exit.[/yellow]")
        except EOFError:
            break

    console.print("\n[cyan]Goodbye![/cyan]")


@app.command()
def run(
    request: str = typer.Argument(..., help="What the agent should do"),
    mode: str = typer.Option(None, "--mode", "-m", help="Loop mode (iterative, single_shot)"),
    model: str = typer.Option(None, "--model", help="Ollama model to use"),
    new_session: bool = typer.Option(False, "--new", help="Run in a fresh session"),
    insert_into: Path = typer.Option(None, "--insert-into", help="File that receives insert_code actions"),
) -> None:
    """Run a single request and exit."""
    loop = _build_loop(insert_into=insert_into, model=model)
    if new_session:
        loop.store.new_session()
    result = _run_request(loop, request, mode=_parse_mode(mode))
    if result is None or result.status is TurnState.ABORTED:
        raise typer.Exit(code=1)


@app.command()
def sessions() -> None:
    """List stored sessions for the workspace."""
    store = SessionStore(JsonFileKeyValueStore(settings.sessions_path))
    _print_sessions(store)


@app.command()
def check() -> None:
    """Check the inference endpoint and workspace configuration."""
    llm = LocalLLM()
    console.print("[bold]System Status Check[/bold]\n")

    ollama_ok = llm.check_availability()
    status = "[green]OK[/green]" if ollama_ok else "[red]NOT AVAILABLE[/red]"
    console.print(f"Ollama ({settings.ollama_base_url}): {status}")
    if ollama_ok:
        models = llm.list_available_models()
        console.print(f"Installed models: {', '.join(models) if models else 'none'}")
        console.print(f"Model: {llm.get_model()}")

    console.print(f"\nWorkspace: {settings.workspace_root}")
    console.print(f"State dir: {settings.state_dir}")
    console.print(f"Default mode: {settings.agent_default_mode}")
    console.print(f"Max steps: {settings.agent_max_steps}")


@app.command()
def serve(
    host: str = typer.Option(settings.api_host, "--host", "-h"),
    port: int = typer.Option(settings.api_port, "--port", "-p"),
    reload: bool = typer.Option(False, "--reload", "-r"),
) -> None:
    """Start the REST API server."""
    import uvicorn

    # Reloader workers rebuild settings from the environment
    os.environ["WORKSPACE_ROOT"] = str(settings.workspace_root)
    os.environ["STATE_DIR"] = str(settings.state_dir)

    console.print(f"Starting API server at [cyan]http://{host}:{port}[/cyan]")
    console.print("API docs available at [cyan]/docs[/cyan]")

    uvicorn.run(
        "deo.api.main:app",
        host=host,
        port=port,
        reload=reload,
        log_level=settings.log_level.lower(),
    )


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
