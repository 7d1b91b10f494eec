import tempfile
import unittest
from pathlib import Path

from ai_skills_sync.cache import cache_path, clean_cache, find_cached_skill, format_bytes, referenced_commits
from ai_skills_sync.references import ParsedSource, SkillRef, SkillType
from ai_skills_sync.state import InstalledSkill, SyncState, update_project_state


def _write(path: Path, size: int) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"x" * size)


def _state_with(root: str, **shas: str) -> SyncState:
    skills = {
        name: InstalledSkill(source=f"obra/{name}", commit_sha=sha, synced_at="t", agents=("claude",), type=SkillType.GLOBAL)
        for name, sha in shas.items()
    }
    return update_project_state(SyncState(), root, skills)


class TestCachePath(unittest.TestCase):
    def test_layout(self) -> None:
        parsed = ParsedSource(owner="obra", repo="skills", ref="v1")
        p = cache_path(parsed, "abc123", "skills/tdd", cache_dir="/tmp/c")
        self.assertEqual(p, Path("/tmp/c/github/obra/skills/abc123/skills/tdd"))
        self.assertEqual(cache_path(parsed, "abc123", cache_dir="/tmp/c"), Path("/tmp/c/github/obra/skills/abc123"))


class TestFindCached(unittest.TestCase):
    def test_miss_when_repo_not_cached(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            self.assertIsNone(find_cached_skill(SkillRef("obra/tdd"), cache_dir=td))

    def test_hit_requires_subpath(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            base = Path(td) / "github" / "ms" / "skills"
            _write(base / "sha1" / "skills" / "pdf" / "SKILL.md", 1)
            (base / "sha2").mkdir()

            self.assertEqual(
                find_cached_skill(SkillRef("ms/skills", "skills/pdf"), cache_dir=td),
                base / "sha1" / "skills" / "pdf",
            )
            self.assertIsNone(find_cached_skill(SkillRef("ms/skills", "skills/docx"), cache_dir=td))

    def test_ref_suffix_shares_repo_dir(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            (Path(td) / "github" / "obra" / "tdd" / "sha1").mkdir(parents=True)
            self.assertIsNotNone(find_cached_skill(SkillRef("obra/tdd@v2"), cache_dir=td))


class TestCleanCache(unittest.TestCase):
    def test_missing_cache_dir(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            result = clean_cache(SyncState(), cache_dir=Path(td) / "absent")
        self.assertEqual((result.removed, result.freed_bytes), (0, 0))

    def test_removes_unreferenced_commits(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            repo = Path(td) / "github" / "obra" / "tdd"
            _write(repo / "sha111" / "SKILL.md", 100)
            _write(repo / "sha222" / "SKILL.md", 250)
            _write(repo / "sha222" / "docs" / "extra.md", 50)

            result = clean_cache(_state_with("/code/app", tdd="sha111"), cache_dir=td)

            self.assertEqual(result.removed, 1)
            self.assertEqual(result.freed_bytes, 300)
            self.assertTrue((repo / "sha111").is_dir())
            self.assertFalse((repo / "sha222").exists())

    def test_commits_referenced_by_any_project_survive(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            repo = Path(td) / "github" / "obra" / "tdd"
            _write(repo / "sha111" / "SKILL.md", 10)
            _write(repo / "sha222" / "SKILL.md", 10)
            state = _state_with("/code/a", tdd="sha111")
            state = update_project_state(state, "/code/b", _state_with("/code/b", tdd="sha222").projects["/code/b"].skills)

            self.assertEqual(referenced_commits(state), {"sha111", "sha222"})
            result = clean_cache(state, cache_dir=td)

            self.assertEqual(result.removed, 0)
            self.assertTrue((repo / "sha222").is_dir())

    def test_prunes_emptied_owner_and_repo_dirs(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            _write(Path(td) / "github" / "gone" / "repo" / "sha9" / "SKILL.md", 5)
            result = clean_cache(SyncState(), cache_dir=td)

            self.assertEqual(result.removed, 1)
            self.assertFalse((Path(td) / "github" / "gone").exists())
            self.assertTrue((Path(td) / "github").is_dir())


class TestFormatBytes(unittest.TestCase):
    def test_format(self) -> None:
        self.assertEqual(format_bytes(0), "0 B")
        self.assertEqual(format_bytes(512), "512 B")
        self.assertEqual(format_bytes(1536), "1.5 KB")
        self.assertEqual(format_bytes(5 * 1024 * 1024), "5.0 MB")


if __name__ == "__main__":
    unittest.main()
