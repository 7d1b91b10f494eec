from __future__ import annotations

import hashlib
import io
import logging
import os
import shutil
import subprocess
import tempfile
import zipfile
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Protocol

import httpx

from .cache import cache_path, find_cached_skill
from .errors import FetchError, SkillNotFoundError
from .paths import expand_home
from .references import LocalSource, ParsedSource, RemoteSource, SkillRef, format_source, repo_url

logger = logging.getLogger(__name__)

DEFAULT_CLONE_TIMEOUT_S = 60.0
GITHUB_API_URL = "https://api.github.com"
TEMP_PREFIX = "ai-skills-sync-"
SKILL_MANIFEST = "SKILL.md"

# Temp clone directories currently on disk; emptied as each clone is cleaned up.
PENDING_CLEANUPS: set[Path] = set()


@dataclass(frozen=True)
class FetchResult:
    path: Path
    commit_sha: str | None = None


class CloneTransport(Protocol):
    def clone(self, parsed: ParsedSource, dest: Path, *, timeout_s: float) -> str:
        """Materialize the repository at ``dest`` and return the checked-out commit SHA."""
        ...


class GitCloneTransport:
    def __init__(self, *, git: str = "git") -> None:
        self.git = git

    def _run(self, args: list[str], *, cwd: Path | None = None, timeout_s: float | None = None) -> str:
        env = dict(os.environ)
        env["GIT_TERMINAL_PROMPT"] = "0"
        try:
            proc = subprocess.run(
                [self.git, *args],
                cwd=str(cwd) if cwd else None,
                env=env,
                capture_output=True,
                text=True,
                timeout=timeout_s,
                check=True,
            )
        except subprocess.TimeoutExpired as e:
            raise FetchError(f"git {args[0]} timed out after {timeout_s:g}s") from e
        except subprocess.CalledProcessError as e:
            detail = (e.stderr or "").strip() or f"exit status {e.returncode}"
            raise FetchError(f"git {args[0]} failed: {detail}") from e
        except OSError as e:
            raise FetchError(f"could not run {self.git!r}: {e}") from e
        return proc.stdout

    def clone(self, parsed: ParsedSource, dest: Path, *, timeout_s: float) -> str:
        args = ["clone", "--depth", "1"]
        if parsed.ref:
            args += ["--branch", parsed.ref]
        args += [repo_url(SkillRef(source=format_source(parsed))), str(dest)]
        self._run(args, timeout_s=timeout_s)
        return self._run(["rev-parse", "HEAD"], cwd=dest, timeout_s=timeout_s).strip()


def _safe_extract_zip(zip_bytes: bytes, dest: Path, *, strip_components: int = 0) -> None:
    dest.mkdir(parents=True, exist_ok=True)
    base = dest.resolve()
    with zipfile.ZipFile(io.BytesIO(zip_bytes), "r") as zf:
        for info in zf.infolist():
            name = info.filename
            if not name:
                continue
            if name.startswith("/"):
                raise FetchError(f"Archive contains an absolute path entry: {name!r}")
            parts = [p for p in name.split("/") if p][strip_components:]
            if not parts:
                continue
            target = (dest / "/".join(parts)).resolve()
            if not str(target).startswith(str(base) + os.sep) and target != base:
                raise FetchError(f"Archive contains an invalid path entry: {name!r}")

            if info.is_dir():
                target.mkdir(parents=True, exist_ok=True)
                continue

            target.parent.mkdir(parents=True, exist_ok=True)
            with zf.open(info, "r") as src, target.open("wb") as out:
                shutil.copyfileobj(src, out)


class ArchiveTransport:
    """Fetches a GitHub zipball over HTTPS; used where no git executable is available."""

    def __init__(self, *, api_url: str = GITHUB_API_URL, token: str | None = None, http: httpx.Client | None = None) -> None:
        self.api_url = api_url.rstrip("/")
        self.token = token if token is not None else os.getenv("GITHUB_TOKEN")
        self._http = http

    def _headers(self, accept: str) -> dict[str, str]:
        headers = {"Accept": accept, "User-Agent": "ai-skills-sync"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _get(self, client: httpx.Client, path: str, *, accept: str) -> httpx.Response:
        try:
            resp = client.get(f"{self.api_url}{path}", headers=self._headers(accept))
        except httpx.TimeoutException as e:
            raise FetchError(f"request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise FetchError(f"request failed: {e}") from e
        if resp.status_code >= 400:
            raise FetchError(f"HTTP {resp.status_code} for {path}")
        return resp

    def clone(self, parsed: ParsedSource, dest: Path, *, timeout_s: float) -> str:
        client = self._http or httpx.Client(timeout=timeout_s, follow_redirects=True)
        try:
            repo_path = f"/repos/{parsed.owner}/{parsed.repo}"
            sha_resp = self._get(client, f"{repo_path}/commits/{parsed.ref or 'HEAD'}", accept="application/vnd.github.sha")
            commit_sha = sha_resp.text.strip()
            if not commit_sha:
                raise FetchError(f"no commit found for {parsed.ref or 'HEAD'}")
            archive = self._get(client, f"{repo_path}/zipball/{commit_sha}", accept="application/vnd.github+json")
            # GitHub wraps the tree in a single "<owner>-<repo>-<sha>/" folder.
            _safe_extract_zip(archive.content, dest, strip_components=1)
            return commit_sha
        finally:
            if self._http is None:
                client.close()


def default_transport() -> CloneTransport:
    choice = (os.getenv("AI_SKILLS_SYNC_TRANSPORT") or "").strip().lower()
    if choice == "archive":
        return ArchiveTransport()
    if choice == "git" or shutil.which("git"):
        return GitCloneTransport()
    logger.debug("git not found on PATH; falling back to archive downloads")
    return ArchiveTransport()


def _default_timeout() -> float:
    raw = os.getenv("AI_SKILLS_SYNC_CLONE_TIMEOUT_S")
    try:
        return float(raw) if raw else DEFAULT_CLONE_TIMEOUT_S
    except ValueError:
        return DEFAULT_CLONE_TIMEOUT_S


def temp_dir_for(source: str) -> Path:
    digest = hashlib.sha256(source.encode("utf-8")).hexdigest()[:12]
    return Path(tempfile.gettempdir()) / f"{TEMP_PREFIX}{digest}"


@contextmanager
def temp_clone_dir(source: str) -> Iterator[Path]:
    """
    Yield the deterministic temp directory for ``source``.

    Leftovers from an earlier attempt are removed first, and the directory is
    removed again on every exit, including KeyboardInterrupt.
    """
    path = temp_dir_for(source)
    shutil.rmtree(path, ignore_errors=True)
    PENDING_CLEANUPS.add(path)
    try:
        yield path
    finally:
        shutil.rmtree(path, ignore_errors=True)
        PENDING_CLEANUPS.discard(path)


def resolve_local_skill(source: LocalSource) -> Path:
    if not source.path:
        raise SkillNotFoundError("local skill requires a path")
    resolved = Path(expand_home(source.path))
    if not resolved.is_absolute():
        resolved = resolved.resolve()
    if not resolved.exists():
        raise SkillNotFoundError(f'local path "{source.path}" does not exist')
    if not resolved.is_dir():
        raise SkillNotFoundError(f'local path "{source.path}" is not a directory')
    return resolved


def find_skill_in_directory(root: Path, skill_name: str) -> str | None:
    """Depth-first search for a ``skill_name`` directory holding a SKILL.md; returns its POSIX path relative to ``root``."""
    try:
        entries = sorted(root.iterdir())
    except OSError:
        return None
    for entry in entries:
        if not entry.is_dir() or entry.name in (".git", "node_modules"):
            continue
        if entry.name == skill_name and (entry / SKILL_MANIFEST).is_file():
            return entry.relative_to(root).as_posix()
        found = find_skill_in_directory(entry, skill_name)
        if found:
            return f"{entry.name}/{found}"
    return None


class SkillFetcher:
    def __init__(
        self,
        *,
        cache_dir: str | Path | None = None,
        transport: CloneTransport | None = None,
        clone_timeout_s: float | None = None,
    ) -> None:
        self.cache_dir = cache_dir
        self.transport = transport if transport is not None else default_transport()
        self.clone_timeout_s = clone_timeout_s if clone_timeout_s is not None else _default_timeout()

    def _cached(self, ref: SkillRef) -> FetchResult | None:
        cached = find_cached_skill(ref, cache_dir=self.cache_dir)
        if cached is None:
            return None
        logger.debug("Cache hit for %s: %s", ref.label(), cached)
        return FetchResult(path=cached)

    def peek(self, ref: SkillRef) -> FetchResult | None:
        """Resolve ``ref`` without touching the network or writing anything; None on a cache miss."""
        target = ref.target()
        if isinstance(target, LocalSource):
            return FetchResult(path=resolve_local_skill(target))
        return self._cached(ref)

    def fetch(self, ref: SkillRef) -> FetchResult:
        target = ref.target()
        if isinstance(target, LocalSource):
            return FetchResult(path=resolve_local_skill(target))
        return self._cached(ref) or self.clone_and_extract(target)

    def clone_and_extract(self, remote: RemoteSource) -> FetchResult:
        parsed = remote.parsed
        with temp_clone_dir(format_source(parsed)) as tmp:
            try:
                logger.debug("Cloning %s into %s", format_source(parsed), tmp)
                commit_sha = self.transport.clone(parsed, tmp, timeout_s=self.clone_timeout_s)

                source_dir = tmp
                if remote.subpath:
                    source_dir = (tmp / remote.subpath).resolve()
                    inside = source_dir == tmp.resolve() or tmp.resolve() in source_dir.parents
                    if not inside or not source_dir.exists():
                        raise SkillNotFoundError(f'subpath "{remote.subpath}" not found in {remote.owner}/{remote.repo}')

                dest = cache_path(parsed, commit_sha, remote.subpath, cache_dir=self.cache_dir)
                if not dest.exists():
                    dest.parent.mkdir(parents=True, exist_ok=True)
                    shutil.copytree(source_dir, dest, ignore=shutil.ignore_patterns(".git"), symlinks=True)
            except SkillNotFoundError:
                raise
            except Exception as e:  # noqa: BLE001 - every transport failure surfaces as FetchError
                raise FetchError(f"Failed to fetch {remote.owner}/{remote.repo}: {e}") from e
        return FetchResult(path=dest, commit_sha=commit_sha)
