from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .errors import ConfigError, MalformedReferenceError
from .paths import config_path
from .references import SkillRef

SCHEMA_URL = "https://cdn.jsdelivr.net/npm/ai-skills-sync@latest/schema.json"

SECTION_GLOBAL = "global"
SECTION_PROJECT = "project"
SECTION_CONDITIONAL = "conditional"


@dataclass(frozen=True)
class ConditionalRule:
    when: str
    skills: tuple[SkillRef, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {"when": self.when, "skills": [s.to_dict() for s in self.skills]}


@dataclass(frozen=True)
class Config:
    global_skills: tuple[SkillRef, ...] = ()
    projects: dict[str, tuple[SkillRef, ...]] = field(default_factory=dict)
    conditional: tuple[ConditionalRule, ...] = ()
    # Sections absent from the file stay absent when it is written back.
    present: frozenset[str] = frozenset()

    @classmethod
    def from_dict(cls, raw: Any) -> "Config":
        if not isinstance(raw, dict):
            raise ConfigError("Top-level value must be an object.")
        present: set[str] = set()

        global_skills: tuple[SkillRef, ...] = ()
        if "global" in raw:
            present.add("global")
            global_skills = _parse_refs(raw["global"], where="global")

        projects: dict[str, tuple[SkillRef, ...]] = {}
        if "projects" in raw:
            present.add("projects")
            raw_projects = raw["projects"]
            if not isinstance(raw_projects, dict):
                raise ConfigError("'projects' must be an object mapping project paths to skill lists.")
            for key, refs in raw_projects.items():
                projects[key] = _parse_refs(refs, where=f"projects[{key!r}]")

        conditional: list[ConditionalRule] = []
        if "conditional" in raw:
            present.add("conditional")
            raw_rules = raw["conditional"]
            if not isinstance(raw_rules, list):
                raise ConfigError("'conditional' must be a list of rules.")
            for i, rule in enumerate(raw_rules):
                if not isinstance(rule, dict) or not isinstance(rule.get("when"), str):
                    raise ConfigError(f"conditional[{i}] must be an object with a 'when' glob string.")
                conditional.append(
                    ConditionalRule(when=rule["when"], skills=_parse_refs(rule.get("skills", []), where=f"conditional[{i}]"))
                )

        return cls(
            global_skills=global_skills,
            projects=projects,
            conditional=tuple(conditional),
            present=frozenset(present),
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"$schema": SCHEMA_URL}
        if "global" in self.present or self.global_skills:
            out["global"] = [r.to_dict() for r in self.global_skills]
        if "projects" in self.present or self.projects:
            out["projects"] = {k: [r.to_dict() for r in refs] for k, refs in self.projects.items()}
        if "conditional" in self.present or self.conditional:
            out["conditional"] = [rule.to_dict() for rule in self.conditional]
        return out


def _parse_refs(raw: Any, *, where: str) -> tuple[SkillRef, ...]:
    if not isinstance(raw, list):
        raise ConfigError(f"'{where}' must be a list of skill references.")
    try:
        return tuple(SkillRef.from_dict(item) for item in raw)
    except MalformedReferenceError as e:
        raise ConfigError(f"{where}: {e}") from e


def default_config() -> Config:
    return Config(present=frozenset({"global", "projects", "conditional"}))


def config_exists(path_override: str | Path | None = None) -> bool:
    return config_path(path_override).exists()


def load_config(path_override: str | Path | None = None) -> Config | None:
    path = config_path(path_override)
    if not path.exists():
        return None

    text = path.read_text(encoding="utf-8")
    try:
        raw = json.loads(text)
    except json.JSONDecodeError as e:
        raise ConfigError(e.msg, line=e.lineno, column=e.colno) from e
    return Config.from_dict(raw)


def save_config(cfg: Config, path_override: str | Path | None = None) -> Path:
    path = config_path(path_override)
    path.parent.mkdir(parents=True, exist_ok=True)

    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(cfg.to_dict(), indent=2) + "\n", encoding="utf-8")
    tmp.replace(path)
    return path


def ensure_config(path_override: str | Path | None = None) -> tuple[Config, bool]:
    """Load the config, creating the default document first when none exists.

    Returns the config and whether it was just created.
    """
    existing = load_config(path_override)
    if existing is not None:
        return existing, False
    cfg = default_config()
    save_config(cfg, path_override)
    return cfg, True


def add_skill_to_config(
    cfg: Config,
    ref: SkillRef,
    section: str,
    *,
    project_root: str | None = None,
    when: str | None = None,
) -> Config:
    if section == SECTION_GLOBAL:
        return Config(
            global_skills=cfg.global_skills + (ref,),
            projects=dict(cfg.projects),
            conditional=cfg.conditional,
            present=cfg.present | {"global"},
        )

    if section == SECTION_PROJECT:
        if not project_root:
            raise ConfigError("A project root is required to add a project skill.")
        projects = dict(cfg.projects)
        projects[project_root] = projects.get(project_root, ()) + (ref,)
        return Config(
            global_skills=cfg.global_skills,
            projects=projects,
            conditional=cfg.conditional,
            present=cfg.present | {"projects"},
        )

    if section == SECTION_CONDITIONAL:
        if not when:
            raise ConfigError("A glob pattern is required to add a conditional skill.")
        rules: list[ConditionalRule] = []
        found = False
        for rule in cfg.conditional:
            if rule.when == when and not found:
                rules.append(ConditionalRule(when=rule.when, skills=rule.skills + (ref,)))
                found = True
            else:
                rules.append(rule)
        if not found:
            rules.append(ConditionalRule(when=when, skills=(ref,)))
        return Config(
            global_skills=cfg.global_skills,
            projects=dict(cfg.projects),
            conditional=tuple(rules),
            present=cfg.present | {"conditional"},
        )

    raise ConfigError(f"Unknown config section: {section!r}")


def remove_skill_from_config(cfg: Config, source: str) -> Config:
    projects = {key: tuple(r for r in refs if r.source != source) for key, refs in cfg.projects.items()}
    rules: list[ConditionalRule] = []
    for rule in cfg.conditional:
        kept = tuple(r for r in rule.skills if r.source != source)
        if kept:
            rules.append(ConditionalRule(when=rule.when, skills=kept))
    return Config(
        global_skills=tuple(r for r in cfg.global_skills if r.source != source),
        projects=projects,
        conditional=tuple(rules),
        present=cfg.present,
    )
