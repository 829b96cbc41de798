from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import os
import subprocess
from typing import Iterable, List, Optional, Sequence

from .errors import DiscoveryError
from .log import get_logger
from .settings import DEFAULT_EXCLUDE, DEFAULT_IMAGE_TYPES, StatusMode


logger = get_logger(__name__)

# Index status letters that mean "content is staged"
STAGED_CODES = {"A", "M", "R", "C"}


@dataclass(frozen=True)
class GitStatusEntry:
    index: str
    working_dir: str
    path: str
    orig_path: Optional[str] = None

    @property
    def deleted(self) -> bool:
        return self.index == "D" or self.working_dir == "D"


def get_image_types(types) -> List[str]:
    """Configured image types, or the defaults when any entry is unsupported."""
    if not isinstance(types, (list, tuple)) or not types:
        return list(DEFAULT_IMAGE_TYPES)
    normalized = [str(t).lower() for t in types]
    if all(t in DEFAULT_IMAGE_TYPES for t in normalized):
        return normalized
    logger.warning("Unsupported image types in {}, using defaults", list(types))
    return list(DEFAULT_IMAGE_TYPES)


def filter_image_files(files: Iterable[Path], image_types: Sequence[str] = DEFAULT_IMAGE_TYPES) -> List[Path]:
    wanted = {t.lower() for t in image_types}
    return [Path(f) for f in files if Path(f).suffix.lower() in wanted]


def crawl_directory(directory: Path, exclude: Sequence[str] = DEFAULT_EXCLUDE) -> List[Path]:
    """
    All files under `directory`, as absolute paths.

    A directory whose path contains any of the `exclude` patterns is
    skipped together with everything beneath it.
    """
    root = Path(directory)
    if not root.is_dir():
        raise DiscoveryError(f"directory not found: {root}")

    def excluded(dirpath: str) -> bool:
        return any(pattern in dirpath for pattern in exclude)

    files: List[Path] = []
    for dirpath, dirnames, filenames in os.walk(root.resolve()):
        dirnames[:] = sorted(d for d in dirnames if not excluded(os.path.join(dirpath, d)))
        for name in sorted(filenames):
            files.append(Path(dirpath) / name)
    return files


def collect_paths(paths: Sequence[Path], exclude: Sequence[str] = DEFAULT_EXCLUDE) -> List[Path]:
    """Mixture of files and directories -> flat list of files."""
    files: List[Path] = []
    for p in paths:
        p = Path(p)
        if p.is_file():
            files.append(p.resolve())
        elif p.is_dir():
            files.extend(crawl_directory(p, exclude))
        else:
            raise DiscoveryError(f"path not found: {p}")
    return files


def parse_porcelain(output: str) -> List[GitStatusEntry]:
    """Parse `git status --porcelain=v1 -z` output."""
    entries: List[GitStatusEntry] = []
    tokens = output.split("\0")
    i = 0
    while i < len(tokens):
        token = tokens[i]
        i += 1
        if len(token) < 4:
            continue
        index, working_dir, path = token[0], token[1], token[3:]
        orig_path = None
        # Renames and copies are followed by the source path
        if index in ("R", "C") or working_dir in ("R", "C"):
            if i < len(tokens):
                orig_path = tokens[i]
            i += 1
        entries.append(GitStatusEntry(index=index, working_dir=working_dir, path=path, orig_path=orig_path))
    return entries


def select_entries(entries: Iterable[GitStatusEntry], mode: StatusMode = "changed") -> List[GitStatusEntry]:
    selected = []
    for entry in entries:
        if entry.deleted:
            continue
        if mode == "staged" and entry.index not in STAGED_CODES:
            continue
        selected.append(entry)
    return selected


def git_changed_files(mode: StatusMode = "changed", cwd: Optional[Path] = None) -> List[Path]:
    cwd = Path(cwd) if cwd is not None else Path.cwd()
    toplevel = _git(["rev-parse", "--show-toplevel"], cwd).strip()
    output = _git(["status", "--porcelain=v1", "-z", "--untracked-files=all"], cwd)

    entries = select_entries(parse_porcelain(output), mode)
    logger.debug("git reported {} candidate entries ({} mode)", len(entries), mode)
    return [(Path(toplevel) / e.path).resolve() for e in entries]


def _git(args: List[str], cwd: Path) -> str:
    try:
        result = subprocess.run(["git", *args], cwd=str(cwd), capture_output=True)
    except OSError as e:
        raise DiscoveryError(f"cannot run git: {e}") from e
    if result.returncode != 0:
        stderr = result.stderr.decode("utf-8", "replace").strip()
        raise DiscoveryError(stderr or f"git {args[0]} failed with status {result.returncode}")
    return result.stdout.decode("utf-8", "surrogateescape")
