from __future__ import annotations

import argparse
import logging
import signal
import sys
import textwrap
import traceback
from pathlib import Path
from typing import Any, Sequence

from ._version import __version__
from .agents import AgentDir, ensure_agent_dirs
from .cache import clean_cache, format_bytes
from .config import (
    SECTION_CONDITIONAL,
    SECTION_GLOBAL,
    SECTION_PROJECT,
    Config,
    add_skill_to_config,
    config_exists,
    ensure_config,
    load_config,
    remove_skill_from_config,
    save_config,
)
from .console import Output
from .errors import ConfigError, SkillNotFoundError, SkillsSyncError
from .fetcher import SkillFetcher, find_skill_in_directory
from .paths import config_path, find_project_root, state_path
from .references import SkillRef, SkillType, ref_from_argument
from .resolver import resolve_skills
from .state import load_state, save_state
from .syncer import SyncResult, sync_skills

ISSUE_URL = "https://github.com/peteretelej/ai-skills-sync/issues"


def _plural(n: int, word: str, suffix: str = "s") -> str:
    return f"{n} {word}{'' if n == 1 else suffix}"


def _print_table(out: Output, rows: list[list[str]], *, indent: str = "  ") -> None:
    if not rows:
        return
    widths = [0] * len(rows[0])
    for r in rows:
        for i, c in enumerate(r):
            widths[i] = max(widths[i], len(c))
    for n, r in enumerate(rows):
        line = indent + "  ".join(c.ljust(widths[i]) for i, c in enumerate(r)).rstrip()
        if n == 0:
            out.dim(line)
        elif r[-1] == "synced":
            out.success(line)
        else:
            out.info(line)


def _prompt_agent_dirs(choices: Sequence[tuple[str, str]]) -> list[str]:
    if not sys.stdin.isatty():
        return []
    print("No agent skill directories found in this project.")
    for i, (kind, rel) in enumerate(choices, start=1):
        print(f"  {i}. {kind} ({rel}/)")
    answer = input("Which agent directories would you like to create? (e.g. 1,3; blank for none): ").strip()
    selected: list[str] = []
    for token in answer.replace(",", " ").split():
        if token.isdigit() and 1 <= int(token) <= len(choices):
            kind = choices[int(token) - 1][0]
            if kind not in selected:
                selected.append(kind)
    return selected


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="ai-skills-sync",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        description="AI skills that activate based on your project.",
        epilog=textwrap.dedent(
            """\
            Environment variables:
              AI_SKILLS_SYNC_CONFIG_PATH, AI_SKILLS_SYNC_STATE_PATH, AI_SKILLS_SYNC_CACHE_DIR,
              AI_SKILLS_SYNC_TRANSPORT (git|archive), AI_SKILLS_SYNC_CLONE_TIMEOUT_S, NO_COLOR
            """
        ),
    )

    def _add_output_flags(parser: argparse.ArgumentParser, *, top_level: bool = False) -> None:
        # Subcommands repeat the flags without defaults so they never reset a top-level value.
        default: Any = False if top_level else argparse.SUPPRESS
        parser.add_argument("--no-color", action="store_true", default=default, help="Disable color output")
        parser.add_argument("--verbose", action="store_true", default=default, help="Log debug details to stderr")

    _add_output_flags(p, top_level=True)
    p.add_argument("--dry-run", action="store_true", help="Preview sync without writing files")
    p.add_argument("--version", action="version", version=f"ai-skills-sync {__version__}")

    sub = p.add_subparsers(dest="cmd")

    add = sub.add_parser("add", help="Add a skill to your config and sync it")
    _add_output_flags(add)
    add.add_argument("source", help="owner/repo[@ref] or a local path (./, /, ~)")
    add.add_argument("--project", action="store_true", help="Add to the current project only")
    add.add_argument("--skill", metavar="NAME", help="Discover a skill by name in a monorepo")
    add.add_argument("--when", metavar="GLOB", help="Add as a conditional skill triggered by a file pattern")
    add.add_argument("--dry-run", action="store_true", default=argparse.SUPPRESS, help="Preview without writing files")

    rm = sub.add_parser("remove", help="Remove a skill from your config")
    _add_output_flags(rm)
    rm.add_argument("source")

    ls = sub.add_parser("list", help="Show active skills for the current project")
    _add_output_flags(ls)

    cfg = sub.add_parser("config", help="Show config and state file locations")
    _add_output_flags(cfg)

    cache = sub.add_parser("cache", help="Cache management")
    cache_sub = cache.add_subparsers(dest="subcmd", required=True)
    clean = cache_sub.add_parser("clean", help="Remove stale cache entries")
    _add_output_flags(clean)

    return p


def _print_sync_result(out: Output, result: SyncResult, project_root: Path, agent_dirs: Sequence[AgentDir]) -> None:
    targets = ", ".join(Path(d.path).relative_to(project_root).as_posix() + "/" for d in agent_dirs)

    for line in result.planned:
        out.dim(f"  [dry-run] {line}")

    if result.synced or result.removed:
        out.info(f"\n  Syncing to {targets}")
    for name in result.synced:
        out.success(f"    {name}")
    for name in result.removed:
        out.dim(f"    - {name} (removed)")
    for name in result.orphaned:
        out.warn(f"    ! {name} (no longer in config - delete it from {targets} to clean up)")
    for err in result.errors:
        out.error(f"    x {err}")

    if result.gitignore_suggestions:
        out.warn("\n  Note: The following paths are not gitignored. Managed skills are third-party")
        out.warn("  content - consider adding to .gitignore:")
        for rel in result.gitignore_suggestions:
            out.dim(f"    echo '{rel}/' >> .gitignore")

    if result.synced:
        out.success(f"\n  Done. {_plural(len(result.synced), 'skill')} synced.")
    elif result.errors:
        out.error("\n  Sync failed for all skills.")


def _run_sync(out: Output, *, cfg: Config, project_root: Path, dry_run: bool, fetcher: SkillFetcher | None = None) -> int:
    agent_dirs = ensure_agent_dirs(project_root, prompt=_prompt_agent_dirs)
    if not agent_dirs:
        out.warn("No agent directories. Nothing to sync.")
        return 0

    resolved = resolve_skills(cfg, project_root)
    counts = {t: sum(1 for s in resolved if s.type is t) for t in SkillType}
    parts: list[str] = []
    if counts[SkillType.GLOBAL]:
        parts.append(f"{counts[SkillType.GLOBAL]} global")
    if counts[SkillType.PROJECT]:
        parts.append(f"{counts[SkillType.PROJECT]} project-specific")
    if counts[SkillType.CONDITIONAL]:
        parts.append(_plural(counts[SkillType.CONDITIONAL], "conditional match", "es"))
    if parts:
        out.dim(f"    {', '.join(parts)}")

    state = load_state()
    result = sync_skills(str(project_root), resolved, agent_dirs, state, dry_run=dry_run, fetcher=fetcher)
    if result.already_in_sync:
        out.success(f"\n  {_plural(len(resolved), 'skill')} active. Already in sync.")
        return 0

    if not dry_run:
        save_state(result.updated_state)
    _print_sync_result(out, result, project_root, agent_dirs)
    return 1 if result.failed else 0


def _announce_new_config(out: Output) -> None:
    out.success("  No configuration found. Created one at:")
    out.dim(f"    {config_path()}")
    out.info("  Next steps:")
    out.dim("    ai-skills-sync add obra/tdd              Add a skill globally")
    out.dim("    ai-skills-sync add obra/tdd --project    Add to this project only")
    out.dim("    ai-skills-sync list                      Show active skills")


def cmd_sync(args: argparse.Namespace, out: Output) -> int:
    cfg, created = ensure_config()
    if created:
        _announce_new_config(out)
    project_root = find_project_root()
    out.header(f"ai-skills-sync v{__version__} - {project_root.name}")
    out.info("  Resolving skills...")
    return _run_sync(out, cfg=cfg, project_root=project_root, dry_run=bool(args.dry_run))


def cmd_add(args: argparse.Namespace, out: Output) -> int:
    cfg, _ = ensure_config()
    dry_run = bool(getattr(args, "dry_run", False))
    fetcher = SkillFetcher()
    ref = ref_from_argument(args.source)

    if args.skill and not ref.is_local:
        out.info(f'  Discovering skill "{args.skill}" in {ref.source}...')
        fetched = fetcher.peek(ref) if dry_run else fetcher.fetch(ref)
        if fetched is None:
            out.dim(f"  [dry-run] Would fetch {ref.label()} to discover {args.skill}")
            return 0
        repo_root = fetched.path
        found = find_skill_in_directory(repo_root, args.skill)
        if not found:
            raise SkillNotFoundError(f'skill "{args.skill}" not found in {ref.source}')
        ref = SkillRef(source=ref.source, path=found)
        out.success(f"  Found at {found}")
    else:
        out.info(f"  Validating {ref.label()}...")
    if dry_run:
        # A cache miss is left for the sync preview to report.
        fetcher.peek(ref)
    else:
        fetcher.fetch(ref)

    project_root = find_project_root()
    if args.when:
        updated = add_skill_to_config(cfg, ref, SECTION_CONDITIONAL, when=args.when)
        label = f"conditional ({args.when})"
    elif args.project:
        updated = add_skill_to_config(cfg, ref, SECTION_PROJECT, project_root=str(project_root))
        label = "project"
    else:
        updated = add_skill_to_config(cfg, ref, SECTION_GLOBAL)
        label = "global"

    if not dry_run:
        save_config(updated)
    out.success(f"  Added {ref.label()} as {label} skill.")
    return _run_sync(out, cfg=updated, project_root=project_root, dry_run=dry_run, fetcher=fetcher)


def cmd_remove(args: argparse.Namespace, out: Output) -> int:
    cfg = load_config()
    if cfg is None:
        raise ConfigError('No config found. Run "ai-skills-sync" to set up.')
    updated = remove_skill_from_config(cfg, args.source)
    if updated.to_dict() == cfg.to_dict():
        out.warn(f"  {args.source} is not in your config.")
        return 0
    save_config(updated)
    out.success(f"  Removed {args.source} from config.")
    out.dim('  Run "ai-skills-sync" to sync changes.')
    return 0


def cmd_list(args: argparse.Namespace, out: Output) -> int:
    cfg = load_config()
    if cfg is None:
        out.info('  No config found. Run "ai-skills-sync" to set up.')
        return 0

    project_root = find_project_root()
    resolved = resolve_skills(cfg, project_root)
    if not resolved:
        out.info("  No skills configured for this project.")
        return 0

    installed = load_state().projects.get(str(project_root))
    out.header(f"Skills for {project_root.name}")
    rows = [["NAME", "SOURCE", "TYPE", "STATUS"]]
    for skill in resolved:
        status = "synced" if installed and skill.install_name in installed.skills else "pending"
        rows.append([skill.install_name, skill.ref.label(), skill.type.value, status])
    _print_table(out, rows)
    out.dim(f"\n  {_plural(len(resolved), 'skill')} total")
    return 0


def cmd_config(args: argparse.Namespace, out: Output) -> int:
    cfg_file = config_path()
    state_file = state_path()
    out.header("ai-skills-sync config")
    out.info("  Config file:")
    out.dim(f"    {cfg_file}")
    if config_exists():
        out.info("\n  Contents:")
        for line in cfg_file.read_text(encoding="utf-8").splitlines():
            out.dim(f"    {line}")
    else:
        out.dim("    (not created yet)")

    out.info("\n  State file:")
    out.dim(f"    {state_file}")
    if not state_file.exists():
        out.dim("    (not created yet)")
    return 0


def cmd_cache(args: argparse.Namespace, out: Output) -> int:
    if args.subcmd != "clean":
        raise AssertionError("unreachable")
    out.info("  Cleaning cache...")
    result = clean_cache(load_state())
    if result.removed == 0:
        out.success("  Cache is clean. Nothing to remove.")
    else:
        noun = "entry" if result.removed == 1 else "entries"
        out.success(f"  Removed {result.removed} stale cache {noun} ({format_bytes(result.freed_bytes)} freed).")
    return 0


def _raise_interrupt(signum: int, frame: Any) -> None:
    raise KeyboardInterrupt


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    out = Output(no_color=bool(args.no_color))
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="  %(message)s" if not args.verbose else "%(levelname)s %(name)s: %(message)s",
    )
    # SIGTERM unwinds like Ctrl-C so in-flight temp clones get removed.
    previous_handler = signal.signal(signal.SIGTERM, _raise_interrupt)

    try:
        if args.cmd is None:
            return cmd_sync(args, out)
        if args.cmd == "add":
            return cmd_add(args, out)
        if args.cmd == "remove":
            return cmd_remove(args, out)
        if args.cmd == "list":
            return cmd_list(args, out)
        if args.cmd == "config":
            return cmd_config(args, out)
        if args.cmd == "cache":
            return cmd_cache(args, out)
        raise AssertionError("unreachable")
    except SkillsSyncError as e:
        out.error(f"\n  {e.user_message}")
        return 1
    except KeyboardInterrupt:
        out.error("\n  Interrupted.")
        return 130
    except Exception:
        out.error(f"\n  Unexpected error: {traceback.format_exc()}")
        out.dim("\n  If this is a bug, please report it at:")
        out.dim(f"    {ISSUE_URL}")
        return 1
    finally:
        signal.signal(signal.SIGTERM, previous_handler)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
