"""Sandboxed execution of model-requested actions."""

import logging
from pathlib import Path

from deo.agent.state import ActionKind, ActionSpec, ExecutionOutcome
from deo.errors import (
    ActionExecutionError,
    NoEditTargetError,
    NoWorkspaceError,
    SandboxViolation,
)
from deo.tools.editor import EditTarget

logger = logging.getLogger(__name__)


class ActionExecutor:
    """
    Executes actions against a workspace root.

    Every path-bearing action is resolved against the root and rejected
    before any filesystem mutation if it lands outside it. Writes create
    missing parent directories, so a file may be written before the
    create_folder for its directory is issued.
    """

    def __init__(
        self,
        workspace_root: Path | None,
        edit_target: EditTarget | None = None,
    ) -> None:
        """
        Initialize the executor.

        Args:
            workspace_root: Sandbox boundary for all writes, or None if no project is open
            edit_target: Active editing surface used by insert_code
        """
        self._root = workspace_root.expanduser().resolve() if workspace_root else None
        self._edit_target = edit_target

    @property
    def workspace_root(self) -> Path | None:
        return self._root

    def set_edit_target(self, edit_target: EditTarget | None) -> None:
        self._edit_target = edit_target

    def resolve_path(self, path: str) -> Path:
        """
        Resolve a workspace-relative path and enforce containment.

        Raises:
            NoWorkspaceError: if no workspace root is set
            SandboxViolation: if the path escapes the workspace root
        """
        if self._root is None:
            raise NoWorkspaceError()
        target = (self._root / Path(path).expanduser()).resolve()
        if target != self._root and self._root not in target.parents:
            raise SandboxViolation(path)
        return target

    def _relative(self, target: Path) -> str:
        assert self._root is not None
        return target.relative_to(self._root).as_posix()

    def execute(self, action: ActionSpec) -> ExecutionOutcome:
        """
        Execute one action.

        Failures scoped to the action (sandbox, filesystem, missing editor)
        come back as unsuccessful outcomes.

        Raises:
            NoWorkspaceError: if a path-bearing action arrives with no workspace open
        """
        if action.kind is ActionKind.DONE:
            return ExecutionOutcome(kind=action.kind, success=True, message="Task completed.")

        if action.kind is ActionKind.INSERT_CODE:
            return self._insert_code(action)

        if action.kind.requires_path:
            return self._execute_path_action(action)

        logger.warning(f"Refusing unknown action: {action.kind.value}")
        return ExecutionOutcome(
            kind=action.kind,
            success=False,
            message=f"Error: Unknown action {action.kind.value}",
            error="unknown_action",
        )

    def _execute_path_action(self, action: ActionSpec) -> ExecutionOutcome:
        if not action.path:
            return ExecutionOutcome(
                kind=action.kind,
                success=False,
                message="Error: No path provided.",
                error="action_execution",
            )

        try:
            target = self.resolve_path(action.path)
        except SandboxViolation as e:
            logger.warning(f"Sandbox violation: {action.kind.value} {action.path!r}")
            return ExecutionOutcome(
                kind=action.kind,
                success=False,
                message=f"Error: {e}",
                path=action.path,
                error="sandbox_violation",
            )
        except (OSError, ValueError, RuntimeError) as e:
            return ExecutionOutcome(
                kind=action.kind,
                success=False,
                message=f"Error: Invalid path {action.path!r}: {e}",
                path=action.path,
                error="action_execution",
            )

        relative = self._relative(target)
        try:
            if action.kind is ActionKind.CREATE_FOLDER:
                self._create_folder(target, relative)
                message = f"Success: Created folder {relative}"
            else:
                self._write_file(target, relative, action.content or "")
                message = f"Success: Wrote to {relative}"
        except ActionExecutionError as e:
            logger.error(f"{action.kind.value} failed for {relative}: {e}")
            return ExecutionOutcome(
                kind=action.kind,
                success=False,
                message=f"Error: {e}",
                path=relative,
                error="action_execution",
            )

        logger.info(message)
        return ExecutionOutcome(kind=action.kind, success=True, message=message, path=relative)

    def _create_folder(self, target: Path, relative: str) -> None:
        try:
            target.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ActionExecutionError(f"Cannot create folder {relative}: {e.strerror or e}", relative) from e

    def _write_file(self, target: Path, relative: str, content: str) -> None:
        # Encode first; a failed encode must leave the file untouched.
        try:
            data = content.encode("utf-8")
        except UnicodeError as e:
            raise ActionExecutionError(f"Cannot encode content for {relative}: {e}", relative) from e
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as e:
            raise ActionExecutionError(f"Cannot write {relative}: {e.strerror or e}", relative) from e

    def _insert_code(self, action: ActionSpec) -> ExecutionOutcome:
        try:
            if self._edit_target is None:
                raise NoEditTargetError()
            self._edit_target.insert(action.content or "")
        except NoEditTargetError as e:
            return ExecutionOutcome(
                kind=action.kind,
                success=False,
                message=f"Error: {e}",
                error="no_edit_target",
            )
        except UnicodeError as e:
            return ExecutionOutcome(
                kind=action.kind,
                success=False,
                message=f"Error: Cannot insert code: {e}",
                error="action_execution",
            )
        except OSError as e:
            return ExecutionOutcome(
                kind=action.kind,
                success=False,
                message=f"Error: Cannot insert code: {e.strerror or e}",
                error="action_execution",
            )

        target = self._edit_target.describe()
        logger.info(f"Inserted code into {target}")
        return ExecutionOutcome(kind=action.kind, success=True, message="Success: Code inserted.")
