from __future__ import annotations

import os
from pathlib import Path

from platformdirs import user_cache_path, user_config_path

APP_NAME = "ai-skills-sync"


def config_dir() -> Path:
    return user_config_path(APP_NAME, appauthor=False)


def config_path(path_override: str | Path | None = None) -> Path:
    if path_override is not None:
        return Path(path_override).expanduser()
    if env := os.getenv("AI_SKILLS_SYNC_CONFIG_PATH"):
        return Path(env).expanduser()
    return config_dir() / "config.json"


def state_path(path_override: str | Path | None = None) -> Path:
    if path_override is not None:
        return Path(path_override).expanduser()
    if env := os.getenv("AI_SKILLS_SYNC_STATE_PATH"):
        return Path(env).expanduser()
    return config_dir() / "state.json"


def cache_dir(path_override: str | Path | None = None) -> Path:
    if path_override is not None:
        return Path(path_override).expanduser()
    if env := os.getenv("AI_SKILLS_SYNC_CACHE_DIR"):
        return Path(env).expanduser()
    return user_cache_path(APP_NAME, appauthor=False)


def expand_home(p: str) -> str:
    # Only a leading ~ is expanded; ~user forms are left alone.
    if p == "~":
        return str(Path.home())
    if p.startswith(("~/", "~\\")):
        return os.path.join(str(Path.home()), p[2:])
    return p


def normalize_path(p: str) -> str:
    return os.path.abspath(os.path.normpath(expand_home(p)))


def find_project_root(cwd: str | Path | None = None) -> Path:
    start = Path(cwd).resolve() if cwd is not None else Path.cwd()
    for candidate in (start, *start.parents):
        if (candidate / ".git").exists():
            return candidate
    return start
