"""Bounded workspace snapshot used to ground the model's plan."""

import json
import logging
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

from config.settings import settings

logger = logging.getLogger(__name__)


@dataclass
class WorkspaceSnapshot:
    """What the builder collected from one traversal."""

    tree: list[str] = field(default_factory=list)
    files: dict[str, str] = field(default_factory=dict)
    manifest: str = ""
    skipped: list[str] = field(default_factory=list)

    @property
    def total_chars(self) -> int:
        return sum(len(content) for content in self.files.values())


class WorkspaceContextBuilder:
    """
    Assembles a bounded text block describing a project.

    The directory tree is depth-limited and excludes dotfiles and
    dependency/build directories. File contents are capped by a file count
    and a cumulative character budget; a file over the per-file ceiling is
    skipped whole, never truncated. Any traversal or read error is swallowed
    and whatever was gathered so far is returned.
    """

    EXCLUDED_DIRS = {
        "node_modules",
        "bower_components",
        "out",
        "dist",
        "build",
        "target",
        "coverage",
        "__pycache__",
        "venv",
        "env",
        "site-packages",
        "vendor",
    }

    TEXT_EXTENSIONS = {
        ".md", ".txt", ".rst",
        ".py", ".js", ".mjs", ".cjs", ".ts", ".jsx", ".tsx", ".vue", ".svelte",
        ".java", ".go", ".rs", ".c", ".cpp", ".h", ".hpp", ".cs", ".rb", ".php",
        ".swift", ".kt", ".scala", ".sh", ".bash", ".zsh",
        ".yaml", ".yml", ".json", ".toml", ".ini", ".cfg",
        ".html", ".css", ".scss", ".xml", ".sql",
    }

    MANIFEST_FILES = ("package.json", "pyproject.toml", "requirements.txt")

    MAX_TREE_LINES = 300

    def __init__(
        self,
        max_depth: int | None = None,
        max_files: int | None = None,
        max_chars: int | None = None,
        max_file_chars: int | None = None,
    ) -> None:
        self._max_depth = max_depth or settings.context_max_depth
        self._max_files = max_files or settings.context_max_files
        self._max_chars = max_chars or settings.context_max_chars
        self._max_file_chars = max_file_chars or settings.context_max_file_chars

    def build(self, root: Path | None) -> str:
        """Render the workspace context for a prompt."""
        if root is None:
            return "No workspace folder is open."
        snapshot = self.snapshot(root)
        return self.render(snapshot, root)

    def snapshot(self, root: Path) -> WorkspaceSnapshot:
        """Collect tree, file contents and manifest summary, failing soft."""
        snapshot = WorkspaceSnapshot()
        candidates: list[tuple[int, str, Path]] = []
        try:
            self._walk(root, root, 1, snapshot, candidates)
        except Exception as e:
            logger.debug(f"Workspace traversal stopped early: {e}")

        try:
            self._collect_files(root, candidates, snapshot)
        except Exception as e:
            logger.debug(f"Workspace file collection stopped early: {e}")

        try:
            snapshot.manifest = self._summarize_manifest(root)
        except Exception as e:
            logger.debug(f"Manifest summary failed: {e}")

        return snapshot

    def render(self, snapshot: WorkspaceSnapshot, root: Path) -> str:
        sections = [f"Workspace: {root.name or root}"]
        if snapshot.tree:
            sections.append("Project structure:\n" + "\n".join(snapshot.tree))
        else:
            sections.append("Project structure:\n(empty)")
        for rel_path, content in snapshot.files.items():
            sections.append(f"--- {rel_path} ---\n{content}")
        if snapshot.manifest:
            sections.append(snapshot.manifest)
        return "\n\n".join(sections)

    def _is_excluded(self, name: str) -> bool:
        return name.startswith(".") or name in self.EXCLUDED_DIRS

    def _walk(
        self,
        root: Path,
        directory: Path,
        depth: int,
        snapshot: WorkspaceSnapshot,
        candidates: list[tuple[int, str, Path]],
    ) -> None:
        if depth > self._max_depth:
            return
        try:
            with os.scandir(directory) as iterator:
                entries = sorted(iterator, key=lambda e: (not e.is_dir(), e.name.lower()))
        except OSError as e:
            logger.debug(f"Cannot list {directory}: {e}")
            return

        indent = "  " * (depth - 1)
        for entry in entries:
            if len(snapshot.tree) >= self.MAX_TREE_LINES:
                return
            if entry.name.startswith("."):
                continue
            try:
                is_dir = entry.is_dir(follow_symlinks=False)
            except OSError:
                continue
            if is_dir:
                if self._is_excluded(entry.name):
                    continue
                snapshot.tree.append(f"{indent}{entry.name}/")
                self._walk(root, Path(entry.path), depth + 1, snapshot, candidates)
            else:
                snapshot.tree.append(f"{indent}{entry.name}")
                path = Path(entry.path)
                if path.suffix.lower() in self.TEXT_EXTENSIONS:
                    rel_path = path.relative_to(root).as_posix()
                    candidates.append((depth, rel_path, path))

    def _collect_files(
        self,
        root: Path,
        candidates: list[tuple[int, str, Path]],
        snapshot: WorkspaceSnapshot,
    ) -> None:
        for _, rel_path, path in sorted(candidates):
            if len(snapshot.files) >= self._max_files:
                break
            try:
                content = path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                logger.debug(f"Skipping unreadable file {rel_path}: {e}")
                continue
            if len(content) > self._max_file_chars:
                snapshot.skipped.append(rel_path)
                continue
            if snapshot.total_chars + len(content) > self._max_chars:
                snapshot.skipped.append(rel_path)
                continue
            snapshot.files[rel_path] = content

    def _summarize_manifest(self, root: Path) -> str:
        lines: list[str] = []
        for name in self.MANIFEST_FILES:
            path = root / name
            if not path.is_file():
                continue
            try:
                if name == "package.json":
                    lines.extend(self._summarize_package_json(path))
                elif name == "pyproject.toml":
                    lines.extend(self._summarize_pyproject(path))
                else:
                    lines.extend(self._summarize_requirements(path))
            except (OSError, ValueError) as e:
                logger.debug(f"Cannot summarize {name}: {e}")
        if not lines:
            return ""
        return "Manifest summary:\n" + "\n".join(lines)

    @staticmethod
    def _summarize_package_json(path: Path) -> list[str]:
        data = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            return []
        lines = [f"package.json: {data.get('name', 'unnamed')}"]
        for key in ("dependencies", "devDependencies"):
            deps = data.get(key) or {}
            if isinstance(deps, dict) and deps:
                lines.append(f"  {key}: {', '.join(sorted(deps))}")
        scripts = data.get("scripts") or {}
        if isinstance(scripts, dict) and scripts:
            lines.append(f"  scripts: {', '.join(sorted(scripts))}")
        return lines

    @staticmethod
    def _summarize_pyproject(path: Path) -> list[str]:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
        project = data.get("project", {})
        lines = [f"pyproject.toml: {project.get('name', 'unnamed')}"]
        deps = project.get("dependencies") or []
        if deps:
            lines.append(f"  dependencies: {', '.join(deps)}")
        optional = project.get("optional-dependencies") or {}
        if optional:
            lines.append(f"  extras: {', '.join(sorted(optional))}")
        scripts = project.get("scripts") or {}
        if scripts:
            lines.append(f"  scripts: {', '.join(sorted(scripts))}")
        return lines

    @staticmethod
    def _summarize_requirements(path: Path) -> list[str]:
        requirements = [
            line.strip()
            for line in path.read_text(encoding="utf-8").splitlines()
            if line.strip() and not line.strip().startswith(("#", "-"))
        ]
        if not requirements:
            return []
        return [f"requirements.txt: {', '.join(requirements[:30])}"]
