from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Sequence


@dataclass(frozen=True)
class AgentDir:
    kind: str
    path: Path


# Order is the order targets are reported and synced in.
AGENT_DIRS: tuple[tuple[str, str], ...] = (
    ("agents", ".agents/skills"),
    ("opencode", ".opencode/skills"),
    ("claude", ".claude/skills"),
    ("copilot", ".github/skills"),
    ("cursor", ".cursor/skills"),
)

AgentPrompt = Callable[[Sequence[tuple[str, str]]], list[str]]


def detect_agent_dirs(project_root: str | Path) -> list[AgentDir]:
    root = Path(project_root)
    return [AgentDir(kind=kind, path=root / rel) for kind, rel in AGENT_DIRS if (root / rel).is_dir()]


def create_agent_dirs(project_root: str | Path, kinds: Sequence[str]) -> list[AgentDir]:
    root = Path(project_root)
    known = dict(AGENT_DIRS)
    created: list[AgentDir] = []
    for kind in kinds:
        rel = known.get(kind)
        if rel is None:
            raise ValueError(f"Unknown agent kind: {kind!r}")
        path = root / rel
        path.mkdir(parents=True, exist_ok=True)
        created.append(AgentDir(kind=kind, path=path))
    return created


def ensure_agent_dirs(project_root: str | Path, *, prompt: AgentPrompt | None = None) -> list[AgentDir]:
    existing = detect_agent_dirs(project_root)
    if existing or prompt is None:
        return existing
    return create_agent_dirs(project_root, prompt(AGENT_DIRS))
