from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable

from .errors import ConfigError
from .paths import state_path
from .references import ResolvedSkill, SkillType

STATE_VERSION = 1


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


@dataclass(frozen=True)
class InstalledSkill:
    source: str
    type: SkillType
    synced_at: str
    agents: tuple[str, ...] = ()
    path: str | None = None
    commit_sha: str | None = None

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "InstalledSkill":
        agents = raw.get("agents")
        return cls(
            source=str(raw.get("source", "")),
            type=SkillType(raw.get("type", SkillType.GLOBAL.value)),
            synced_at=str(raw.get("syncedAt", "")),
            agents=tuple(str(a) for a in agents) if isinstance(agents, list) else (),
            path=raw.get("path") or None,
            commit_sha=raw.get("commitSha") or None,
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"source": self.source}
        if self.path:
            out["path"] = self.path
        if self.commit_sha:
            out["commitSha"] = self.commit_sha
        out["syncedAt"] = self.synced_at
        out["agents"] = list(self.agents)
        out["type"] = self.type.value
        return out


@dataclass(frozen=True)
class ProjectState:
    skills: dict[str, InstalledSkill] = field(default_factory=dict)
    gitignore_suggested: bool = False

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "ProjectState":
        skills_raw = raw.get("skills")
        skills: dict[str, InstalledSkill] = {}
        if isinstance(skills_raw, dict):
            for name, item in skills_raw.items():
                if isinstance(item, dict):
                    skills[name] = InstalledSkill.from_dict(item)
        return cls(skills=skills, gitignore_suggested=bool(raw.get("gitignoreSuggested", False)))

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"skills": {name: s.to_dict() for name, s in self.skills.items()}}
        if self.gitignore_suggested:
            out["gitignoreSuggested"] = True
        return out


@dataclass(frozen=True)
class SyncState:
    version: int = STATE_VERSION
    last_sync: str = ""
    projects: dict[str, ProjectState] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: Any) -> "SyncState":
        if not isinstance(raw, dict):
            return cls()
        projects_raw = raw.get("projects")
        projects: dict[str, ProjectState] = {}
        if isinstance(projects_raw, dict):
            for root, item in projects_raw.items():
                if isinstance(item, dict):
                    projects[root] = ProjectState.from_dict(item)
        return cls(version=STATE_VERSION, last_sync=str(raw.get("lastSync", "")), projects=projects)

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "lastSync": self.last_sync,
            "projects": {root: p.to_dict() for root, p in self.projects.items()},
        }


def load_state(path_override: str | Path | None = None) -> SyncState:
    path = state_path(path_override)
    if not path.exists():
        return SyncState()
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ConfigError(f"State file {path} is not valid JSON: {e.msg}", line=e.lineno, column=e.colno) from e
    try:
        return SyncState.from_dict(raw)
    except ValueError as e:
        raise ConfigError(f"State file {path} is malformed: {e}") from e


def save_state(state: SyncState, path_override: str | Path | None = None) -> Path:
    path = state_path(path_override)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(state.to_dict(), indent=2) + "\n", encoding="utf-8")
    tmp.replace(path)
    return path


def get_project_state(state: SyncState, project_root: str) -> ProjectState:
    return state.projects.get(project_root) or ProjectState()


def update_project_state(
    state: SyncState,
    project_root: str,
    skills: dict[str, InstalledSkill],
    *,
    gitignore_suggested: bool | None = None,
    last_sync: str | None = None,
) -> SyncState:
    previous = get_project_state(state, project_root)
    projects = dict(state.projects)
    projects[project_root] = ProjectState(
        skills=dict(skills),
        gitignore_suggested=previous.gitignore_suggested if gitignore_suggested is None else gitignore_suggested,
    )
    return replace(state, projects=projects, last_sync=state.last_sync if last_sync is None else last_sync)


def is_in_sync(state: SyncState, project_root: str, resolved: Iterable[ResolvedSkill]) -> bool:
    # Commit SHAs are not compared: only a config change triggers a resync.
    installed = get_project_state(state, project_root).skills
    resolved_list = list(resolved)
    if len(installed) != len({s.install_name for s in resolved_list}):
        return False
    for skill in resolved_list:
        entry = installed.get(skill.install_name)
        if entry is None:
            return False
        if entry.source != skill.ref.source:
            return False
        if (entry.path or None) != (skill.ref.path or None):
            return False
    return True


def get_orphaned_skills(state: SyncState, project_root: str, resolved: Iterable[ResolvedSkill]) -> list[str]:
    names = {s.install_name for s in resolved}
    return [name for name in get_project_state(state, project_root).skills if name not in names]


def get_managed_skill_names(state: SyncState, project_root: str) -> list[str]:
    return list(get_project_state(state, project_root).skills)
