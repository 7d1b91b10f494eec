import json
import tempfile
import unittest
from pathlib import Path

from ai_skills_sync.errors import ConfigError
from ai_skills_sync.references import ResolvedSkill, SkillRef, SkillType
from ai_skills_sync.state import (
    InstalledSkill,
    ProjectState,
    SyncState,
    get_managed_skill_names,
    get_orphaned_skills,
    is_in_sync,
    load_state,
    save_state,
    update_project_state,
    utc_now,
)

ROOT = "/code/app"


def _installed(source: str, path: str | None = None, sha: str | None = "abc", type: SkillType = SkillType.GLOBAL) -> InstalledSkill:
    return InstalledSkill(source=source, path=path, commit_sha=sha, synced_at="2025-01-01T00:00:00.000Z", agents=("claude",), type=type)


def _resolved(source: str, name: str, path: str | None = None) -> ResolvedSkill:
    return ResolvedSkill(ref=SkillRef(source, path), type=SkillType.GLOBAL, install_name=name)


class TestLoadSave(unittest.TestCase):
    def test_missing_file_is_empty_state(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            state = load_state(Path(td) / "state.json")
        self.assertEqual(state.version, 1)
        self.assertEqual(state.projects, {})

    def test_round_trip_uses_camel_case_keys(self) -> None:
        state = update_project_state(SyncState(), ROOT, {"tdd": _installed("obra/tdd", sha="sha111")}, last_sync="2025-01-02T00:00:00.000Z")
        with tempfile.TemporaryDirectory() as td:
            p = Path(td) / "nested" / "state.json"
            save_state(state, p)
            raw = json.loads(p.read_text(encoding="utf-8"))
            loaded = load_state(p)

        self.assertEqual(raw["lastSync"], "2025-01-02T00:00:00.000Z")
        skill_raw = raw["projects"][ROOT]["skills"]["tdd"]
        self.assertEqual(skill_raw["commitSha"], "sha111")
        self.assertIn("syncedAt", skill_raw)
        self.assertEqual(skill_raw["type"], "global")
        self.assertEqual(loaded, state)

    def test_invalid_json_raises_config_error(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            p = Path(td) / "state.json"
            p.write_text("{nope", encoding="utf-8")
            with self.assertRaises(ConfigError):
                load_state(p)

    def test_unknown_skill_type_raises_config_error(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            p = Path(td) / "state.json"
            p.write_text(
                json.dumps({"version": 1, "lastSync": "", "projects": {ROOT: {"skills": {"x": {"source": "a/b", "type": "weird"}}}}}),
                encoding="utf-8",
            )
            with self.assertRaises(ConfigError):
                load_state(p)

    def test_utc_now_format(self) -> None:
        now = utc_now()
        self.assertTrue(now.endswith("Z"))
        self.assertRegex(now, r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z$")


class TestUpdate(unittest.TestCase):
    def test_update_does_not_mutate_input(self) -> None:
        original = SyncState(projects={"/other": ProjectState(skills={"x": _installed("a/x")})})
        updated = update_project_state(original, ROOT, {"tdd": _installed("obra/tdd")}, gitignore_suggested=True)

        self.assertNotIn(ROOT, original.projects)
        self.assertIn(ROOT, updated.projects)
        self.assertIn("/other", updated.projects)
        self.assertTrue(updated.projects[ROOT].gitignore_suggested)
        self.assertEqual(updated.last_sync, original.last_sync)

    def test_gitignore_flag_is_carried_forward(self) -> None:
        first = update_project_state(SyncState(), ROOT, {}, gitignore_suggested=True)
        second = update_project_state(first, ROOT, {"tdd": _installed("obra/tdd")})
        self.assertTrue(second.projects[ROOT].gitignore_suggested)


class TestInSync(unittest.TestCase):
    def setUp(self) -> None:
        self.state = update_project_state(
            SyncState(),
            ROOT,
            {"tdd": _installed("obra/tdd"), "pdf": _installed("ms/skills", "skills/pdf")},
        )

    def test_matching_config_is_in_sync(self) -> None:
        resolved = [_resolved("obra/tdd", "tdd"), _resolved("ms/skills", "pdf", "skills/pdf")]
        self.assertTrue(is_in_sync(self.state, ROOT, resolved))

    def test_commit_sha_is_ignored(self) -> None:
        state = update_project_state(self.state, ROOT, {"tdd": _installed("obra/tdd", sha="other"), "pdf": _installed("ms/skills", "skills/pdf", sha=None)})
        resolved = [_resolved("obra/tdd", "tdd"), _resolved("ms/skills", "pdf", "skills/pdf")]
        self.assertTrue(is_in_sync(state, ROOT, resolved))

    def test_count_source_and_path_changes_break_sync(self) -> None:
        self.assertFalse(is_in_sync(self.state, ROOT, [_resolved("obra/tdd", "tdd")]))
        self.assertFalse(is_in_sync(self.state, ROOT, [_resolved("fork/tdd", "tdd"), _resolved("ms/skills", "pdf", "skills/pdf")]))
        self.assertFalse(is_in_sync(self.state, ROOT, [_resolved("obra/tdd", "tdd"), _resolved("ms/skills", "pdf", "other/pdf")]))

    def test_unknown_project_only_in_sync_when_nothing_resolves(self) -> None:
        self.assertTrue(is_in_sync(self.state, "/elsewhere", []))
        self.assertFalse(is_in_sync(self.state, "/elsewhere", [_resolved("obra/tdd", "tdd")]))


class TestOrphans(unittest.TestCase):
    def test_orphans_are_installed_but_not_resolved(self) -> None:
        state = update_project_state(SyncState(), ROOT, {"tdd": _installed("obra/tdd"), "old": _installed("a/old")})
        self.assertEqual(get_orphaned_skills(state, ROOT, [_resolved("obra/tdd", "tdd")]), ["old"])
        self.assertEqual(get_orphaned_skills(state, "/elsewhere", []), [])
        self.assertEqual(get_managed_skill_names(state, ROOT), ["tdd", "old"])


if __name__ == "__main__":
    unittest.main()
