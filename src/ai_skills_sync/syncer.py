from __future__ import annotations

import logging
import os
import re
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from .agents import AgentDir
from .errors import SyncError
from .fetcher import SKILL_MANIFEST, SkillFetcher
from .references import ResolvedSkill, SkillType
from .state import (
    InstalledSkill,
    SyncState,
    get_managed_skill_names,
    get_orphaned_skills,
    get_project_state,
    is_in_sync,
    update_project_state,
    utc_now,
)

logger = logging.getLogger(__name__)

COLLISION_SEPARATOR = "."
_NAME_LINE_RE = re.compile(r"^(name:\s*)\S.*?(\r?\n)?$")


@dataclass(frozen=True)
class SyncResult:
    synced: tuple[str, ...]
    removed: tuple[str, ...]
    orphaned: tuple[str, ...]
    errors: tuple[SyncError, ...]
    already_in_sync: bool
    gitignore_suggestions: tuple[str, ...]
    updated_state: SyncState
    planned: tuple[str, ...] = ()

    @property
    def failed(self) -> bool:
        return bool(self.errors) and not self.synced


def copy_skill_to_dir(src: Path, dest: Path) -> None:
    if dest.is_symlink() or dest.is_file():
        dest.unlink()
    elif dest.exists():
        shutil.rmtree(dest)
    dest.parent.mkdir(parents=True, exist_ok=True)
    shutil.copytree(src, dest, ignore=shutil.ignore_patterns(".git"))


def remove_skill_dir(path: Path) -> None:
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.exists():
        shutil.rmtree(path)


def rewrite_skill_name(manifest: Path, new_name: str) -> bool:
    """
    Point the ``name:`` field of the manifest front matter at ``new_name``.

    Only the first ``---`` block is considered and only its first name line is
    replaced; the body is never touched. Returns whether the file changed.
    """
    content = manifest.read_text(encoding="utf-8")
    lines = content.splitlines(keepends=True)
    if not lines or lines[0].strip() != "---":
        return False

    end = None
    for i in range(1, len(lines)):
        if lines[i].strip() == "---":
            end = i
            break
    if end is None:
        return False

    for i in range(1, end):
        m = _NAME_LINE_RE.match(lines[i])
        if not m:
            continue
        updated = f"{m.group(1)}{new_name}{m.group(2) or ''}"
        if updated == lines[i]:
            return False
        lines[i] = updated
        manifest.write_text("".join(lines), encoding="utf-8")
        return True
    return False


def _relative_posix(path: Path, root: Path) -> str:
    return Path(os.path.relpath(path, root)).as_posix()


def check_gitignore(project_root: Path, agent_dirs: Sequence[AgentDir]) -> list[str]:
    """Return the agent target paths (relative to the project) that no .gitignore line covers."""
    relatives = [_relative_posix(d.path, project_root) for d in agent_dirs]
    gitignore = project_root / ".gitignore"
    try:
        text = gitignore.read_text(encoding="utf-8")
    except FileNotFoundError:
        return relatives

    entries: list[str] = []
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        entries.append(line.rstrip("/"))

    uncovered: list[str] = []
    for rel in relatives:
        if not any(rel == e or rel.startswith(e + "/") for e in entries if e):
            uncovered.append(rel)
    return uncovered


def sync_skills(
    project_root: str | Path,
    resolved: Sequence[ResolvedSkill],
    agent_dirs: Sequence[AgentDir],
    state: SyncState,
    *,
    dry_run: bool = False,
    fetcher: SkillFetcher | None = None,
) -> SyncResult:
    root_key = str(project_root)
    root = Path(project_root)

    if is_in_sync(state, root_key, resolved):
        return SyncResult(
            synced=(),
            removed=(),
            orphaned=(),
            errors=(),
            already_in_sync=True,
            gitignore_suggestions=(),
            updated_state=state,
        )

    fetcher = fetcher if fetcher is not None else SkillFetcher()
    project = get_project_state(state, root_key)
    managed = set(get_managed_skill_names(state, root_key))
    synced: list[str] = []
    planned: list[str] = []
    errors: list[SyncError] = []
    new_skills: dict[str, InstalledSkill] = {}

    for skill in resolved:
        name = skill.install_name
        try:
            if dry_run:
                # Dry runs never clone: a cache miss is only reported.
                if fetcher.peek(skill.ref) is None:
                    planned.append(f"Would fetch {skill.ref.label()}")
                fetched = None
            else:
                fetched = fetcher.fetch(skill.ref)
            reached: list[str] = []
            for agent in agent_dirs:
                dest = agent.path / name
                if dest.exists() and name not in managed:
                    logger.warning("Skipping %s in %s: directory exists and is not managed", name, agent.kind)
                    continue
                if fetched is None:
                    planned.append(f"Would copy {skill.ref.label()} -> {_relative_posix(dest, root)}")
                else:
                    copy_skill_to_dir(fetched.path, dest)
                    manifest = dest / SKILL_MANIFEST
                    if COLLISION_SEPARATOR in name and manifest.is_file():
                        rewrite_skill_name(manifest, name)
                reached.append(agent.kind)

            if reached:
                synced.append(name)
                new_skills[name] = InstalledSkill(
                    source=skill.ref.source,
                    path=skill.ref.path,
                    commit_sha=fetched.commit_sha if fetched else None,
                    synced_at=utc_now(),
                    agents=tuple(reached),
                    type=skill.type,
                )
        except Exception as e:  # noqa: BLE001 - one skill failing never stops its siblings
            err = SyncError(f"{name}: {e}")
            errors.append(err)
            logger.debug("Failed to sync %s", name, exc_info=True)
            previous = project.skills.get(name)
            if previous is not None:
                new_skills[name] = previous

    removed: list[str] = []
    orphaned: list[str] = []
    for name in get_orphaned_skills(state, root_key, resolved):
        installed = project.skills[name]
        if installed.type is SkillType.CONDITIONAL:
            if dry_run:
                planned.append(f"Would remove orphaned conditional skill: {name}")
            else:
                for agent in agent_dirs:
                    remove_skill_dir(agent.path / name)
            removed.append(name)
        else:
            orphaned.append(name)
            new_skills[name] = installed

    suggestions: list[str] = []
    if not project.gitignore_suggested:
        suggestions = check_gitignore(root, agent_dirs)

    if dry_run:
        updated = state
    else:
        updated = update_project_state(
            state,
            root_key,
            new_skills,
            gitignore_suggested=project.gitignore_suggested or bool(suggestions),
            last_sync=utc_now(),
        )

    return SyncResult(
        synced=tuple(synced),
        removed=tuple(removed),
        orphaned=tuple(orphaned),
        errors=tuple(errors),
        already_in_sync=False,
        gitignore_suggestions=tuple(suggestions),
        updated_state=updated,
        planned=tuple(planned),
    )
