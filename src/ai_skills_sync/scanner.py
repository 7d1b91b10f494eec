from __future__ import annotations

import logging
import os
from fnmatch import fnmatchcase
from functools import lru_cache
from pathlib import Path
from typing import Iterable, Iterator, Sequence

from .config import ConditionalRule

logger = logging.getLogger(__name__)

# Directory names never descended into while scanning a project.
EXCLUDED_DIRS = frozenset(
    {
        "node_modules",
        ".git",
        "dist",
        "build",
        "vendor",
        "__pycache__",
        ".venv",
        "target",
        "coverage",
        ".next",
        ".nuxt",
    }
)


@lru_cache(maxsize=128)
def _split_pattern(pattern: str) -> tuple[str, ...]:
    parts = [p for p in pattern.replace("\\", "/").split("/") if p and p != "."]
    # Collapse runs of ** so the matcher never recurses on redundant wildcards.
    out: list[str] = []
    for part in parts:
        if part == "**" and out and out[-1] == "**":
            continue
        out.append(part)
    return tuple(out)


def _match_parts(pattern: Sequence[str], parts: Sequence[str]) -> bool:
    if not pattern:
        return not parts
    head = pattern[0]
    if head == "**":
        rest = pattern[1:]
        return any(_match_parts(rest, parts[i:]) for i in range(len(parts) + 1))
    if not parts:
        return False
    if not fnmatchcase(parts[0], head):
        return False
    return _match_parts(pattern[1:], parts[1:])


def match_path(rel_path: str, pattern: str) -> bool:
    parts = [p for p in rel_path.replace("\\", "/").split("/") if p]
    return _match_parts(_split_pattern(pattern), parts)


def iter_matches(root: str | Path, pattern: str, *, excluded: Iterable[str] = EXCLUDED_DIRS) -> Iterator[str]:
    """
    Lazily yield POSIX paths (relative to ``root``) of files and directories matching ``pattern``.

    Directories named in ``excluded`` are pruned from the walk and never matched.
    """
    excluded_set = frozenset(excluded)
    root_s = os.fspath(root)

    for dirpath, dirnames, filenames in os.walk(root_s):
        dirnames[:] = sorted(d for d in dirnames if d not in excluded_set)
        rel_dir = os.path.relpath(dirpath, root_s)
        prefix = [] if rel_dir == "." else rel_dir.split(os.sep)
        for name in dirnames + sorted(filenames):
            rel_path = "/".join(prefix + [name])
            if match_path(rel_path, pattern):
                yield rel_path


def has_match(root: str | Path, pattern: str) -> bool:
    for _ in iter_matches(root, pattern):
        return True
    return False


def scan_for_conditional_matches(root: str | Path, rules: Iterable[ConditionalRule]) -> list[ConditionalRule]:
    matched: list[ConditionalRule] = []
    for rule in rules:
        if has_match(root, rule.when):
            logger.debug("Conditional rule %r matched in %s", rule.when, root)
            matched.append(rule)
    return matched
