from __future__ import annotations


class SkillsSyncError(RuntimeError):
    """Base class for every error the CLI reports without a traceback."""

    @property
    def user_message(self) -> str:
        return str(self)


class MalformedReferenceError(SkillsSyncError, ValueError):
    pass


class SkillNotFoundError(SkillsSyncError):
    def __init__(self, detail: str) -> None:
        super().__init__(f"Skill not found: {detail}")
        self.detail = detail

    @property
    def user_message(self) -> str:
        return f"Could not find {self.detail!r} - check the repo exists and is public, or verify git SSH access."


class FetchError(SkillsSyncError):
    @property
    def user_message(self) -> str:
        return f"Fetch failed: {self}"


class SyncError(SkillsSyncError):
    @property
    def user_message(self) -> str:
        return f"Sync failed: {self}"


class ConfigError(SkillsSyncError):
    def __init__(self, message: str, *, line: int | None = None, column: int | None = None) -> None:
        super().__init__(message)
        self.line = line
        self.column = column

    @property
    def user_message(self) -> str:
        if self.line is not None:
            return f"Config error at line {self.line}, column {self.column}: {self}"
        return f"Config error: {self}"
