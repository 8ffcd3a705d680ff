"""Tests for the command-line interface."""

from types import SimpleNamespace

import pytest
from prompt_toolkit.completion import CompleteEvent
from prompt_toolkit.document import Document
from prompt_toolkit.keys import Keys
from typer.testing import CliRunner

import deo.cli as cli
from config.settings import settings
from deo.agent.loop import AgentLoop
from deo.agent.modes import LoopMode
from deo.tools.executor import ActionExecutor

from conftest import FakeLLM

runner = CliRunner()


@pytest.fixture(autouse=True)
def restore_settings(monkeypatch):
    """CLI runs rebase global settings onto the workspace."""
    monkeypatch.setattr(settings, "workspace_root", settings.workspace_root)
    monkeypatch.setattr(settings, "state_dir", settings.state_dir)
    monkeypatch.delenv("STATE_DIR", raising=False)


def test_run_writes_into_workspace(monkeypatch, workspace):
    plan = '{"plan": "Add page", "actions": [{"action": "create_file", "path": "index.html", "content": "hi"}]}'
    monkeypatch.setattr(cli, "LocalLLM", lambda model=None: FakeLLM([plan]))

    result = runner.invoke(cli.app, ["--workspace", str(workspace), "run", "Add a page", "--mode", "single_shot"])

    assert result.exit_code == 0, result.output
    assert (workspace / "index.html").read_text(encoding="utf-8") == "hi"
    assert (workspace / ".deo" / "sessions.json").exists()
    assert "Summary" in result.output


def test_run_exits_non_zero_when_aborted(monkeypatch, workspace):
    monkeypatch.setattr(cli, "LocalLLM", lambda model=None: FakeLLM(["garbage"]))
    result = runner.invoke(cli.app, ["-w", str(workspace), "run", "Do it", "-m", "single-shot"])
    assert result.exit_code == 1


class ScriptedPrompt:
    """Stands in for the prompt_toolkit session with canned input lines."""

    def __init__(self, lines):
        self.lines = list(lines)

    def prompt(self, message):
        if not self.lines:
            raise EOFError
        return self.lines.pop(0)


def test_chat_survives_a_failing_request(monkeypatch, workspace):
    plan = {"action": "create_file", "path": "ok.txt", "content": "ok"}
    llm = FakeLLM([RuntimeError("disk full"), plan, {"action": "done"}])
    monkeypatch.setattr(cli, "LocalLLM", lambda model=None: llm)
    monkeypatch.setattr(cli, "_create_prompt_session", lambda loop: ScriptedPrompt(["Break", "Write ok.txt", "/quit"]))

    result = runner.invoke(cli.app, ["-w", str(workspace), "chat"])

    assert result.exit_code == 0, result.output
    assert "disk full" in result.output
    assert (workspace / "ok.txt").exists()
    assert "Goodbye" in result.output


def test_run_reports_unexpected_errors(monkeypatch, workspace):
    monkeypatch.setattr(cli, "LocalLLM", lambda model=None: FakeLLM([RuntimeError("disk full")]))
    result = runner.invoke(cli.app, ["-w", str(workspace), "run", "Do it"])
    assert result.exit_code == 1
    assert "disk full" in result.output


def test_sessions_lists_table(workspace):
    result = runner.invoke(cli.app, ["-w", str(workspace), "sessions"])
    assert result.exit_code == 0, result.output
    assert "New Chat" in result.output


class TestSlashCommands:
    @pytest.fixture
    def loop(self, store, workspace):
        return AgentLoop(store, llm=FakeLLM(), executor=ActionExecutor(workspace))

    def test_quit(self, loop):
        assert cli._handle_command("/quit", loop) is False

    def test_new_and_switch(self, loop):
        first = loop.store.active_id
        assert cli._handle_command("/new", loop)
        assert loop.store.active_id != first
        cli._handle_command("/switch 1", loop)
        assert loop.store.active_id == first

    def test_switch_unknown_keeps_active(self, loop):
        active = loop.store.active_id
        cli._handle_command("/switch 99", loop)
        assert loop.store.active_id == active

    def test_mode_switch(self, loop):
        cli._handle_command("/mode single_shot", loop)
        assert loop.get_mode() is LoopMode.SINGLE_SHOT
        cli._handle_command("/mode next", loop)
        assert loop.get_mode() is LoopMode.ITERATIVE

    def test_unknown_command_continues(self, loop):
        assert cli._handle_command("/frobnicate", loop) is True


class TestPrompt:
    @pytest.fixture
    def loop(self, store, workspace):
        return AgentLoop(store, llm=FakeLLM(), executor=ActionExecutor(workspace), mode=LoopMode.ITERATIVE)

    @staticmethod
    def _complete(loop, text):
        completer = cli.SlashCompleter(loop)
        return [c.text for c in completer.get_completions(Document(text), CompleteEvent())]

    def test_shift_tab_cycles_mode(self, loop):
        bindings = cli._create_key_bindings(loop)
        [binding] = bindings.get_bindings_for_keys((Keys.BackTab,))
        exits = []
        binding.handler(SimpleNamespace(app=SimpleNamespace(exit=lambda result: exits.append(result))))
        assert loop.get_mode() is LoopMode.SINGLE_SHOT
        assert exits == [cli.MODE_SWITCH]

    def test_completes_command_names(self, loop):
        assert self._complete(loop, "/mo") == ["/mode", "/modes", "/model", "/models"]

    def test_completes_mode_and_model_names(self, loop):
        assert self._complete(loop, "/mode s") == ["single_shot"]
        assert self._complete(loop, "/model f") == ["fake:latest"]

    def test_plain_text_is_not_completed(self, loop):
        assert self._complete(loop, "make a page") == []
