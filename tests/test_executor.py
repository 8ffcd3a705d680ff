"""Tests for sandboxed action execution."""

import os

import pytest

from deo.agent.state import ActionKind, ActionSpec
from deo.errors import NoWorkspaceError
from deo.tools.editor import BufferEditTarget, FileEditTarget
from deo.tools.executor import ActionExecutor


@pytest.fixture
def executor(workspace):
    return ActionExecutor(workspace)


class TestPathActions:
    def test_create_folder(self, executor, workspace):
        outcome = executor.execute(ActionSpec(ActionKind.CREATE_FOLDER, "src/components"))
        assert outcome.success
        assert outcome.message == "Success: Created folder src/components"
        assert (workspace / "src" / "components").is_dir()

    def test_create_folder_twice_is_fine(self, executor, workspace):
        executor.execute(ActionSpec(ActionKind.CREATE_FOLDER, "src"))
        assert executor.execute(ActionSpec(ActionKind.CREATE_FOLDER, "src")).success

    def test_create_file_creates_parents(self, executor, workspace):
        outcome = executor.execute(ActionSpec(ActionKind.CREATE_FILE, "a/b/c.txt", "hello"))
        assert outcome.success
        assert outcome.path == "a/b/c.txt"
        assert (workspace / "a" / "b" / "c.txt").read_text(encoding="utf-8") == "hello"

    def test_folder_then_file_and_reverse_order(self, executor, workspace):
        forward = [
            executor.execute(ActionSpec(ActionKind.CREATE_FOLDER, "a/b")),
            executor.execute(ActionSpec(ActionKind.CREATE_FILE, "a/b/c.txt", "1")),
        ]
        reverse = [
            executor.execute(ActionSpec(ActionKind.CREATE_FILE, "x/y/z.txt", "2")),
            executor.execute(ActionSpec(ActionKind.CREATE_FOLDER, "x/y")),
        ]
        assert all(outcome.success for outcome in forward + reverse)
        assert (workspace / "x" / "y" / "z.txt").read_text(encoding="utf-8") == "2"

    def test_edit_file_overwrites(self, executor, workspace):
        (workspace / "notes.md").write_text("old content that is longer", encoding="utf-8")
        outcome = executor.execute(ActionSpec(ActionKind.EDIT_FILE, "notes.md", "new"))
        assert outcome.message == "Success: Wrote to notes.md"
        assert (workspace / "notes.md").read_text(encoding="utf-8") == "new"

    def test_path_is_normalized(self, executor, workspace):
        outcome = executor.execute(ActionSpec(ActionKind.CREATE_FILE, "./src/../main.py", "pass"))
        assert outcome.success
        assert outcome.path == "main.py"

    def test_writing_over_a_directory_fails(self, executor, workspace):
        (workspace / "src").mkdir()
        outcome = executor.execute(ActionSpec(ActionKind.CREATE_FILE, "src", "x"))
        assert not outcome.success
        assert outcome.error == "action_execution"
        assert outcome.message.startswith("Error:")

    def test_unencodable_content_leaves_file_intact(self, executor, workspace):
        (workspace / "keep.txt").write_text("precious", encoding="utf-8")
        outcome = executor.execute(ActionSpec(ActionKind.EDIT_FILE, "keep.txt", "x\ud800y"))
        assert not outcome.success
        assert outcome.error == "action_execution"
        assert outcome.path == "keep.txt"
        assert (workspace / "keep.txt").read_text(encoding="utf-8") == "precious"


class TestSandbox:
    def test_parent_escape_rejected(self, executor, workspace):
        outcome = executor.execute(ActionSpec(ActionKind.CREATE_FILE, "../outside.txt", "x"))
        assert not outcome.success
        assert outcome.error == "sandbox_violation"
        assert "Access denied" in outcome.message
        assert not (workspace.parent / "outside.txt").exists()

    def test_absolute_path_rejected(self, executor, tmp_path):
        target = tmp_path / "elsewhere" / "file.txt"
        outcome = executor.execute(ActionSpec(ActionKind.CREATE_FILE, str(target), "x"))
        assert outcome.error == "sandbox_violation"
        assert not target.parent.exists()

    def test_folder_escape_rejected(self, executor, workspace):
        outcome = executor.execute(ActionSpec(ActionKind.CREATE_FOLDER, "../../up"))
        assert outcome.error == "sandbox_violation"
        assert not (workspace.parent.parent / "up").exists()

    @pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks unavailable")
    def test_symlink_escape_rejected(self, executor, workspace, tmp_path):
        outside = tmp_path / "outside"
        outside.mkdir()
        (workspace / "link").symlink_to(outside, target_is_directory=True)
        outcome = executor.execute(ActionSpec(ActionKind.CREATE_FILE, "link/evil.txt", "x"))
        assert outcome.error == "sandbox_violation"
        assert not (outside / "evil.txt").exists()

    def test_sibling_with_shared_prefix_rejected(self, executor, workspace):
        outcome = executor.execute(ActionSpec(ActionKind.CREATE_FILE, "../project-evil/x.txt", "x"))
        assert outcome.error == "sandbox_violation"

    def test_root_itself_allowed(self, executor):
        assert executor.execute(ActionSpec(ActionKind.CREATE_FOLDER, ".")).success

    def test_no_workspace(self):
        executor = ActionExecutor(None)
        with pytest.raises(NoWorkspaceError):
            executor.execute(ActionSpec(ActionKind.CREATE_FILE, "a.txt", "x"))


class TestInsertCode:
    def test_without_edit_target(self, executor):
        outcome = executor.execute(ActionSpec(ActionKind.INSERT_CODE, content="x = 1"))
        assert not outcome.success
        assert outcome.error == "no_edit_target"
        assert outcome.message == "Error: No visible editor."

    def test_into_buffer_at_cursor(self, workspace):
        buffer = BufferEditTarget("ab", cursor=1)
        executor = ActionExecutor(workspace, edit_target=buffer)
        outcome = executor.execute(ActionSpec(ActionKind.INSERT_CODE, content="XY"))
        assert outcome.success
        assert outcome.message == "Success: Code inserted."
        assert buffer.text == "aXYb"
        assert buffer.cursor == 3

    def test_into_file(self, workspace):
        doc = workspace / "doc.py"
        doc.write_text("first\n", encoding="utf-8")
        executor = ActionExecutor(workspace)
        executor.set_edit_target(FileEditTarget(doc))
        executor.execute(ActionSpec(ActionKind.INSERT_CODE, content="second\n"))
        assert doc.read_text(encoding="utf-8") == "first\nsecond\n"

    def test_unencodable_insert_into_file(self, workspace):
        doc = workspace / "doc.py"
        doc.write_text("first\n", encoding="utf-8")
        executor = ActionExecutor(workspace, edit_target=FileEditTarget(doc))
        outcome = executor.execute(ActionSpec(ActionKind.INSERT_CODE, content="\udc80"))
        assert not outcome.success
        assert outcome.error == "action_execution"
        assert doc.read_text(encoding="utf-8") == "first\n"

    def test_does_not_need_workspace(self):
        buffer = BufferEditTarget()
        executor = ActionExecutor(None, edit_target=buffer)
        assert executor.execute(ActionSpec(ActionKind.INSERT_CODE, content="hi")).success
        assert buffer.text == "hi"


def test_unknown_action_refused(executor):
    outcome = executor.execute(ActionSpec(ActionKind.UNKNOWN))
    assert not outcome.success
    assert outcome.error == "unknown_action"


def test_done_is_a_no_op(executor, workspace):
    outcome = executor.execute(ActionSpec(ActionKind.DONE))
    assert outcome.success
    assert list(workspace.iterdir()) == []
