from __future__ import annotations

import hashlib
import logging
from collections import Counter
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable

from .config import ConditionalRule, Config
from .paths import normalize_path
from .references import ResolvedSkill, SkillRef, SkillType, derive_skill_name, parse_source
from .scanner import scan_for_conditional_matches

logger = logging.getLogger(__name__)

RuleMatcher = Callable[[str, Iterable[ConditionalRule]], list[ConditionalRule]]


@dataclass(frozen=True)
class TaggedSkill:
    ref: SkillRef
    type: SkillType


def _normalized_or_none(p: str) -> str | None:
    try:
        return normalize_path(p)
    except (OSError, ValueError):
        return None


def resolve_skills(
    config: Config,
    project_root: str | Path,
    *,
    matcher: RuleMatcher = scan_for_conditional_matches,
) -> list[ResolvedSkill]:
    """
    Resolve the skills that apply to ``project_root``.

    Collects global, project and conditional references, drops duplicates
    (project > global > conditional) and assigns collision-free install names.
    """
    root = str(project_root)
    tagged: list[TaggedSkill] = [TaggedSkill(ref=ref, type=SkillType.GLOBAL) for ref in config.global_skills]

    normalized_root = _normalized_or_none(root)
    for key, refs in config.projects.items():
        # Keys written on another OS may not normalize to anything here.
        if normalized_root is None or _normalized_or_none(key) != normalized_root:
            continue
        tagged.extend(TaggedSkill(ref=ref, type=SkillType.PROJECT) for ref in refs)

    if config.conditional:
        for rule in matcher(root, config.conditional):
            tagged.extend(TaggedSkill(ref=ref, type=SkillType.CONDITIONAL) for ref in rule.skills)

    return resolve_install_names(deduplicate_skills(tagged))


def deduplicate_skills(skills: Iterable[TaggedSkill]) -> list[TaggedSkill]:
    seen: dict[str, TaggedSkill] = {}
    for skill in skills:
        key = skill.ref.key
        existing = seen.get(key)
        if existing is None or skill.type.priority > existing.type.priority:
            seen[key] = skill
    return list(seen.values())


def resolve_install_names(skills: Iterable[TaggedSkill]) -> list[ResolvedSkill]:
    groups: dict[str, list[TaggedSkill]] = {}
    for skill in skills:
        groups.setdefault(derive_skill_name(skill.ref), []).append(skill)

    named: list[tuple[TaggedSkill, str]] = []
    for base_name, group in groups.items():
        if len(group) == 1:
            named.append((group[0], base_name))
            continue
        logger.debug("Namespace collision on %r between %d skills", base_name, len(group))
        named.extend((entry, f"{parse_source(entry.ref.source).owner}.{base_name}") for entry in group)

    # Prefixed names can clash with each other or with another group's base name.
    counts = Counter(name for _, name in named)
    resolved: list[ResolvedSkill] = []
    for entry, name in named:
        if counts[name] > 1:
            name = f"{name}-{_identity_digest(entry.ref)}"
        resolved.append(ResolvedSkill(ref=entry.ref, type=entry.type, install_name=name))
    return resolved


def _identity_digest(ref: SkillRef) -> str:
    return hashlib.sha256(ref.key.encode("utf-8")).hexdigest()[:8]
