from ._version import __version__
from .errors import ConfigError, FetchError, MalformedReferenceError, SkillNotFoundError, SkillsSyncError, SyncError
from .references import ResolvedSkill, SkillRef, SkillType, derive_skill_name, parse_source
from .resolver import resolve_skills
from .syncer import SyncResult, sync_skills

__all__ = [
    "__version__",
    "ConfigError",
    "FetchError",
    "MalformedReferenceError",
    "ResolvedSkill",
    "SkillNotFoundError",
    "SkillRef",
    "SkillType",
    "SkillsSyncError",
    "SyncError",
    "SyncResult",
    "derive_skill_name",
    "parse_source",
    "resolve_skills",
    "sync_skills",
]
