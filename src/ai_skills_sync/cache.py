from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path

from .paths import cache_dir as default_cache_dir
from .references import ParsedSource, SkillRef, parse_source
from .state import SyncState

logger = logging.getLogger(__name__)

HOST_DIR = "github"


@dataclass(frozen=True)
class CleanResult:
    removed: int
    freed_bytes: int


def _root(cache_dir: str | Path | None) -> Path:
    return default_cache_dir(cache_dir)


def cache_path(parsed: ParsedSource, commit_sha: str, subpath: str | None = None, *, cache_dir: str | Path | None = None) -> Path:
    base = _root(cache_dir) / HOST_DIR / parsed.owner / parsed.repo / commit_sha
    return base / subpath if subpath else base


def find_cached_skill(ref: SkillRef, *, cache_dir: str | Path | None = None) -> Path | None:
    """Return the first cached commit of ``ref`` that contains its subpath, if any."""
    parsed = parse_source(ref.source)
    repo_dir = _root(cache_dir) / HOST_DIR / parsed.owner / parsed.repo
    if not repo_dir.is_dir():
        return None
    try:
        entries = sorted(repo_dir.iterdir())
    except OSError:
        return None
    for entry in entries:
        if not entry.is_dir():
            continue
        skill_path = entry / ref.path if ref.path else entry
        if skill_path.exists():
            return skill_path
    return None


def referenced_commits(state: SyncState) -> set[str]:
    shas: set[str] = set()
    for project in state.projects.values():
        for skill in project.skills.values():
            if skill.commit_sha:
                shas.add(skill.commit_sha)
    return shas


def dir_size(path: Path) -> int:
    total = 0
    for dirpath, _dirnames, filenames in os.walk(path):
        for name in filenames:
            try:
                total += (Path(dirpath) / name).lstat().st_size
            except OSError:
                continue
    return total


def _subdirs(path: Path) -> list[Path]:
    try:
        return sorted(p for p in path.iterdir() if p.is_dir())
    except OSError:
        return []


def _prune_if_empty(path: Path) -> None:
    try:
        next(path.iterdir())
    except StopIteration:
        path.rmdir()
    except OSError:
        pass


def clean_cache(state: SyncState, *, cache_dir: str | Path | None = None) -> CleanResult:
    """Delete cached commits no project in ``state`` references; prune emptied owner/repo dirs."""
    host_dir = _root(cache_dir) / HOST_DIR
    if not host_dir.is_dir():
        return CleanResult(removed=0, freed_bytes=0)

    active = referenced_commits(state)
    removed = 0
    freed = 0
    for owner_dir in _subdirs(host_dir):
        for repo_dir in _subdirs(owner_dir):
            for sha_dir in _subdirs(repo_dir):
                if sha_dir.name in active:
                    continue
                size = dir_size(sha_dir)
                shutil.rmtree(sha_dir)
                logger.debug("Removed cache entry %s (%d bytes)", sha_dir, size)
                removed += 1
                freed += size
            _prune_if_empty(repo_dir)
        _prune_if_empty(owner_dir)
    return CleanResult(removed=removed, freed_bytes=freed)


def format_bytes(n: int) -> str:
    if n <= 0:
        return "0 B"
    units = ["B", "KB", "MB", "GB"]
    value = float(n)
    i = 0
    while value >= 1024 and i < len(units) - 1:
        value /= 1024
        i += 1
    if i == 0:
        return f"{n} B"
    return f"{value:.1f} {units[i]}"
