from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from .errors import MalformedReferenceError

LOCAL_SOURCE = "local"
GITHUB_URL = "https://github.com"


class SkillType(str, Enum):
    GLOBAL = "global"
    PROJECT = "project"
    CONDITIONAL = "conditional"

    @property
    def priority(self) -> int:
        return _TYPE_PRIORITY[self]


_TYPE_PRIORITY = {
    SkillType.PROJECT: 2,
    SkillType.GLOBAL: 1,
    SkillType.CONDITIONAL: 0,
}


@dataclass(frozen=True)
class ParsedSource:
    owner: str
    repo: str
    ref: str | None = None


@dataclass(frozen=True)
class LocalSource:
    path: str | None


@dataclass(frozen=True)
class RemoteSource:
    owner: str
    repo: str
    ref: str | None = None
    subpath: str | None = None

    @property
    def parsed(self) -> ParsedSource:
        return ParsedSource(owner=self.owner, repo=self.repo, ref=self.ref)


@dataclass(frozen=True)
class SkillRef:
    source: str
    path: str | None = None

    @property
    def key(self) -> str:
        return f"{self.source}::{self.path or ''}"

    @property
    def is_local(self) -> bool:
        return self.source == LOCAL_SOURCE

    def target(self) -> LocalSource | RemoteSource:
        if self.is_local:
            return LocalSource(path=self.path)
        parsed = parse_source(self.source)
        return RemoteSource(owner=parsed.owner, repo=parsed.repo, ref=parsed.ref, subpath=self.path)

    def label(self) -> str:
        if self.is_local:
            return self.path or LOCAL_SOURCE
        return self.source + (f" ({self.path})" if self.path else "")

    @classmethod
    def from_dict(cls, raw: Any) -> "SkillRef":
        if not isinstance(raw, dict) or not isinstance(raw.get("source"), str):
            raise MalformedReferenceError(f"Invalid skill reference {raw!r}. Expected an object with a 'source' string.")
        path = raw.get("path")
        if path is not None and not isinstance(path, str):
            raise MalformedReferenceError(f"Invalid skill path {path!r} for {raw['source']!r}.")
        return cls(source=raw["source"], path=path or None)

    def to_dict(self) -> dict[str, str]:
        out = {"source": self.source}
        if self.path:
            out["path"] = self.path
        return out


@dataclass(frozen=True)
class ResolvedSkill:
    ref: SkillRef
    type: SkillType
    install_name: str


def parse_source(source: str) -> ParsedSource:
    if source == LOCAL_SOURCE:
        return ParsedSource(owner=LOCAL_SOURCE, repo=LOCAL_SOURCE)

    raw = source.strip()
    ref: str | None = None
    at_idx = raw.rfind("@")
    if at_idx > 0 and raw[at_idx + 1 :].strip():
        ref = raw[at_idx + 1 :].strip()
        raw = raw[:at_idx]

    if "/" not in raw:
        raise MalformedReferenceError(f"Invalid source format {source!r}. Expected <owner>/<repo>[@ref].")
    owner, repo = raw.split("/", 1)
    owner = owner.strip()
    repo = repo.strip()
    if not owner or not repo:
        raise MalformedReferenceError(f"Invalid source {source!r}: owner and repo must not be empty.")
    return ParsedSource(owner=owner, repo=repo, ref=ref)


def format_source(parsed: ParsedSource) -> str:
    if parsed.owner == LOCAL_SOURCE and parsed.repo == LOCAL_SOURCE:
        return LOCAL_SOURCE
    base = f"{parsed.owner}/{parsed.repo}"
    return f"{base}@{parsed.ref}" if parsed.ref else base


def repo_url(ref: SkillRef) -> str:
    parsed = parse_source(ref.source)
    return f"{GITHUB_URL}/{parsed.owner}/{parsed.repo}.git"


def derive_skill_name(ref: SkillRef) -> str:
    if ref.path:
        segments = [s for s in ref.path.replace("\\", "/").split("/") if s]
        if segments:
            return segments[-1]
    return parse_source(ref.source).repo


def ref_from_argument(value: str) -> SkillRef:
    raw = value.strip()
    if raw.startswith((".", "/", "~")):
        return SkillRef(source=LOCAL_SOURCE, path=raw)
    parse_source(raw)
    return SkillRef(source=raw)
