"""Agent control loop: context, inference, plan parsing, sandboxed execution."""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Protocol

from config.settings import settings
from deo.agent.events import AgentEvent, EventCallback, EventKind
from deo.agent.modes import LoopMode, ModeConfig, get_mode_config
from deo.agent.plan import parse_plan
from deo.agent.state import (
    ActionKind,
    ExecutionOutcome,
    Plan,
    TurnEvent,
    TurnMachine,
    TurnState,
)
from deo.context.memory import MemorySummarizer
from deo.context.workspace import WorkspaceContextBuilder
from deo.errors import NoWorkspaceError, PlanParseError, TransportError, TurnInProgressError
from deo.llm.local import GenerationResult, LocalLLM
from deo.sessions.store import SessionStore
from deo.tools.executor import ActionExecutor

logger = logging.getLogger(__name__)

CORRECTIVE_NOTE = "System: Invalid JSON returned. Please retry with valid JSON format."
EMPTY_PLAN_NOTE = "System Result: No action returned. Reply with the next action, or done when finished."


class InferenceClient(Protocol):
    """What the loop needs from an inference backend."""

    def generate(
        self,
        prompt: str,
        stream: bool | None = None,
        temperature: float | None = None,
        response_format: str | None = "json",
    ) -> GenerationResult:
        ...


@dataclass
class TurnResult:
    """Result from one agent turn."""

    session_id: str
    mode: LoopMode
    status: TurnState
    response: str
    steps_executed: int
    outcomes: list[ExecutionOutcome] = field(default_factory=list)
    touched_paths: list[str] = field(default_factory=list)
    history: list[str] = field(default_factory=list)
    corrections: int = 0
    stopped_early: bool = False
    trail: list[TurnState] = field(default_factory=list)

    @property
    def failed(self) -> list[ExecutionOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.success]

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "mode": self.mode.value,
            "status": self.status.value,
            "response": self.response,
            "steps_executed": self.steps_executed,
            "touched_paths": self.touched_paths,
            "corrections": self.corrections,
            "stopped_early": self.stopped_early,
            "outcomes": [
                {
                    "action": outcome.kind.value,
                    "success": outcome.success,
                    "message": outcome.message,
                    "path": outcome.path,
                    "error": outcome.error,
                }
                for outcome in self.outcomes
            ],
        }


@dataclass
class _Turn:
    session_id: str
    request: str
    mode: LoopMode
    config: ModeConfig
    machine: TurnMachine
    history: list[str] = field(default_factory=list)
    outcomes: list[ExecutionOutcome] = field(default_factory=list)
    steps: int = 0
    corrections: int = 0
    stopped_early: bool = False
    callback: EventCallback | None = None

    @property
    def touched_paths(self) -> list[str]:
        paths: list[str] = []
        for outcome in self.outcomes:
            if outcome.success and outcome.path and outcome.path not in paths:
                paths.append(outcome.path)
        return paths


class AgentLoop:
    """
    Runs agent turns against a workspace on behalf of chat sessions.

    Two loop shapes share one executor and one history contract:
    iterative (one action per round, recent results replayed into the next
    prompt, bounded by a step budget) and single-shot (one multi-action plan
    executed in order).
    """

    def __init__(
        self,
        store: SessionStore,
        llm: InferenceClient | None = None,
        executor: ActionExecutor | None = None,
        context_builder: WorkspaceContextBuilder | None = None,
        summarizer: MemorySummarizer | None = None,
        event_callback: EventCallback | None = None,
        mode: LoopMode | None = None,
        max_steps: int | None = None,
        history_entries: int | None = None,
    ) -> None:
        self._store = store
        self._llm = llm or LocalLLM()
        self._executor = executor or ActionExecutor(settings.workspace_root)
        self._context_builder = context_builder or WorkspaceContextBuilder()
        self._summarizer = summarizer or MemorySummarizer()
        self._event_callback = event_callback
        self._mode = mode or LoopMode(settings.agent_default_mode)
        self._max_steps = max_steps or settings.agent_max_steps
        self._history_entries = history_entries or settings.agent_history_entries
        self._in_flight: set[str] = set()
        self._guard = threading.Lock()

    @property
    def store(self) -> SessionStore:
        return self._store

    @property
    def llm(self) -> InferenceClient:
        return self._llm

    @property
    def executor(self) -> ActionExecutor:
        return self._executor

    def get_mode(self) -> LoopMode:
        return self._mode

    def set_mode(self, mode: LoopMode) -> None:
        logger.info(f"Switching loop mode from {self._mode.value} to {mode.value}")
        self._mode = mode

    def set_event_callback(self, callback: EventCallback | None) -> None:
        self._event_callback = callback

    def run(
        self,
        request: str,
        session_id: str | None = None,
        mode: LoopMode | None = None,
        event_callback: EventCallback | None = None,
    ) -> TurnResult:
        """
        Run one turn for a session.

        Args:
            request: The user's natural-language request
            session_id: Target session. Defaults to the active session.
            mode: Loop shape for this turn. Defaults to the loop's mode.
            event_callback: Receives this turn's events instead of the
                loop-wide callback.

        Returns:
            TurnResult describing how the turn ended

        Raises:
            KeyError: if the session does not exist
            TurnInProgressError: if a turn is already running for the session
        """
        session_id = session_id or self._store.active_id
        if self._store.get(session_id) is None:
            raise KeyError(session_id)

        with self._guard:
            if session_id in self._in_flight:
                raise TurnInProgressError(session_id)
            self._in_flight.add(session_id)
        try:
            return self._run_turn(request, session_id, mode or self._mode, event_callback)
        finally:
            with self._guard:
                self._in_flight.discard(session_id)

    def _run_turn(
        self,
        request: str,
        session_id: str,
        mode: LoopMode,
        event_callback: EventCallback | None,
    ) -> TurnResult:
        config = get_mode_config(mode)
        turn = _Turn(
            session_id=session_id,
            request=request,
            mode=mode,
            config=config,
            machine=TurnMachine(mode=mode),
            callback=event_callback or self._event_callback,
        )
        machine = turn.machine
        logger.info(f"Starting {mode.value} turn for session {session_id}")

        self._store.append_user(session_id, request)
        machine.fire(TurnEvent.REQUEST_RECEIVED)
        self._emit(turn, EventKind.STATUS, "Thinking...")
        base_prompt = self._build_base_prompt(turn)
        machine.fire(TurnEvent.CONTEXT_READY)

        while True:
            if machine.state is TurnState.CONTINUE:
                if turn.steps >= self._max_steps:
                    machine.fire(TurnEvent.BUDGET_EXHAUSTED)
                    turn.stopped_early = True
                    break
                machine.fire(TurnEvent.NEXT_STEP)
            elif turn.steps >= self._max_steps:
                machine.fire(TurnEvent.BUDGET_EXHAUSTED)
                turn.stopped_early = True
                break

            turn.steps += 1
            prompt = self._compose_prompt(base_prompt, turn)
            try:
                result = self._llm.generate(
                    prompt,
                    temperature=config.temperature,
                    response_format=settings.ollama_format,
                )
            except TransportError as e:
                machine.fire(TurnEvent.TRANSPORT_FAILED)
                return self._abort(turn, f"Error: {e}")
            machine.fire(TurnEvent.RESPONSE_RECEIVED)

            try:
                plan = parse_plan(result.content)
            except PlanParseError as e:
                if machine.fire(TurnEvent.PARSE_FAILED) is TurnState.ABORTED:
                    return self._abort(turn, f"Error: Could not parse the model's plan ({e}).")
                logger.warning(f"Step {turn.steps}: {e}; asking the model to retry")
                turn.history.append(CORRECTIVE_NOTE)
                turn.corrections += 1
                continue
            machine.fire(TurnEvent.PLAN_PARSED)

            if plan.description:
                self._store.append_ai(session_id, plan.description)
                self._emit(turn, EventKind.PLAN, plan.description)

            try:
                done = self._execute_plan(turn, plan)
            except NoWorkspaceError as e:
                machine.fire(TurnEvent.WORKSPACE_MISSING)
                return self._abort(turn, f"Error: {e}")

            if done:
                machine.fire(TurnEvent.DONE_SIGNALLED)
                break
            if not plan.actions and mode is LoopMode.ITERATIVE:
                logger.warning(f"Step {turn.steps}: plan carried no actions")
                turn.history.append(EMPTY_PLAN_NOTE)
            if machine.fire(TurnEvent.ACTIONS_EXECUTED) is TurnState.DONE:
                break

        summary = self._render_summary(turn)
        self._store.append_ai(session_id, summary)
        self._emit(turn, EventKind.SUMMARY, summary)
        logger.info(
            f"Turn finished for session {session_id}: {turn.steps} step(s), "
            f"{len(turn.touched_paths)} path(s) touched"
        )
        return self._result(turn, summary)

    def _execute_plan(self, turn: _Turn, plan: Plan) -> bool:
        """Execute actions in order; returns True when the plan signals done."""
        for action in plan.actions:
            if action.kind is ActionKind.DONE:
                return True

            outcome = self._executor.execute(action)
            turn.outcomes.append(outcome)
            self._store.append_step(
                turn.session_id,
                action.kind.value,
                outcome.path or action.path,
                success=outcome.success,
                text=outcome.message,
            )
            self._emit(
                turn,
                EventKind.PROGRESS,
                outcome.message,
                action=action.kind.value,
                path=outcome.path or action.path,
                success=outcome.success,
            )
            turn.history.append(
                f"Assistant Action: {json.dumps(action.to_dict())}\n"
                f"System Result: {outcome.message}"
            )
        return False

    def _build_base_prompt(self, turn: _Turn) -> str:
        session = self._store.get(turn.session_id)
        prior = session.messages[:-1] if session else []
        context = self._context_builder.build(self._executor.workspace_root)
        memory = self._summarizer.summarize(prior)
        return (
            f"{turn.config.system_prompt}\n\n"
            f"Workspace context:\n{context}\n\n"
            f"Conversation memory:\n{memory}\n\n"
            f"User Request: {turn.request}\n"
        )

    def _compose_prompt(self, base_prompt: str, turn: _Turn) -> str:
        if turn.mode is not LoopMode.ITERATIVE or not turn.history:
            return base_prompt
        recent = turn.history[-self._history_entries :]
        omitted = len(turn.history) - len(recent)
        lines = ["", "Previous steps (most recent last):"]
        if omitted:
            lines.append(f"({omitted} earlier step(s) omitted)")
        lines.extend(recent)
        return base_prompt + "\n".join(lines) + "\n"

    def _render_summary(self, turn: _Turn) -> str:
        if turn.stopped_early:
            lines = [f"Max steps reached ({self._max_steps})."]
        else:
            lines = ["Task completed."]
        lines.extend(self._render_paths(turn))
        return "\n".join(lines)

    @staticmethod
    def _render_paths(turn: _Turn) -> list[str]:
        lines: list[str] = []
        touched = turn.touched_paths
        if touched:
            lines.append(f"Files touched: {', '.join(touched)}")
        else:
            lines.append("No files were changed.")
        failed = [outcome for outcome in turn.outcomes if not outcome.success]
        if failed:
            lines.append("Failed actions:")
            for outcome in failed:
                target = outcome.path or outcome.kind.value
                lines.append(f"- {target}: {outcome.message}")
        return lines

    def _abort(self, turn: _Turn, message: str) -> TurnResult:
        logger.error(f"Turn aborted for session {turn.session_id}: {message}")
        text = message
        if turn.outcomes:
            text = "\n".join([message, *self._render_paths(turn)])
        self._store.append_ai(turn.session_id, text)
        self._emit(turn, EventKind.ERROR, text)
        return self._result(turn, text)

    def _result(self, turn: _Turn, response: str) -> TurnResult:
        return TurnResult(
            session_id=turn.session_id,
            mode=turn.mode,
            status=turn.machine.state,
            response=response,
            steps_executed=turn.steps,
            outcomes=list(turn.outcomes),
            touched_paths=turn.touched_paths,
            history=list(turn.history),
            corrections=turn.corrections,
            stopped_early=turn.stopped_early,
            trail=list(turn.machine.trail),
        )

    def _emit(
        self,
        turn: _Turn,
        kind: EventKind,
        text: str,
        action: str | None = None,
        path: str | None = None,
        success: bool | None = None,
    ) -> None:
        if turn.callback is None:
            return
        event = AgentEvent(
            kind=kind,
            text=text,
            session_id=turn.session_id,
            action=action,
            path=path,
            success=success,
            step=turn.steps or None,
        )
        try:
            turn.callback(event)
        except Exception as e:
            logger.warning(f"Event callback failed for {kind.value} event: {e}")
