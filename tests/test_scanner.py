import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from ai_skills_sync.config import ConditionalRule
from ai_skills_sync.references import SkillRef
from ai_skills_sync.scanner import has_match, iter_matches, match_path, scan_for_conditional_matches


def _touch(root: Path, rel: str) -> None:
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("x", encoding="utf-8")


class TestMatchPath(unittest.TestCase):
    def test_double_star_spans_segments(self) -> None:
        self.assertTrue(match_path("src/app/main.tsx", "**/*.tsx"))
        self.assertTrue(match_path("main.tsx", "**/*.tsx"))
        self.assertTrue(match_path("a/b/c/schema.prisma", "a/**/schema.prisma"))
        self.assertFalse(match_path("src/main.ts", "**/*.tsx"))

    def test_single_star_stays_in_segment(self) -> None:
        self.assertTrue(match_path("Dockerfile", "Dockerfile"))
        self.assertTrue(match_path("src/x.py", "src/*.py"))
        self.assertFalse(match_path("src/pkg/x.py", "src/*.py"))


class TestScan(unittest.TestCase):
    def test_matching_and_non_matching_rules(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            _touch(root, "src/components/App.tsx")
            tsx = ConditionalRule(when="**/*.tsx", skills=(SkillRef("a/react"),))
            rust = ConditionalRule(when="**/Cargo.toml", skills=(SkillRef("a/rust"),))
            self.assertEqual(scan_for_conditional_matches(root, [tsx, rust]), [tsx])
            self.assertEqual(scan_for_conditional_matches(root, []), [])

    def test_root_level_files_match(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            _touch(root, "package.json")
            self.assertTrue(has_match(root, "package.json"))

    def test_excluded_directories_are_pruned(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            for rel in ("node_modules/lib/x.py", ".git/hooks/x.py", "dist/x.py", "build/x.py", "vendor/x.py"):
                _touch(root, rel)
            self.assertFalse(has_match(root, "**/*.py"))
            _touch(root, "app/real.py")
            self.assertEqual(list(iter_matches(root, "**/*.py")), ["app/real.py"])

    def test_directories_can_match(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            (root / "terraform").mkdir()
            self.assertTrue(has_match(root, "terraform"))

    def test_stops_at_first_match(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            for i in range(20):
                _touch(root, f"pkg{i}/mod.py")

            visited: list[str] = []
            real_walk = os.walk

            def counting_walk(top):
                for entry in real_walk(top):
                    visited.append(entry[0])
                    yield entry

            with patch("ai_skills_sync.scanner.os.walk", side_effect=counting_walk):
                self.assertTrue(has_match(root, "*/mod.py"))
            self.assertEqual(len(visited), 2)


if __name__ == "__main__":
    unittest.main()
