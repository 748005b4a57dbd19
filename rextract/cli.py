"""CLI entry point: extract a range of a Rust file into a new function."""

import argparse
import sys
from pathlib import Path
from typing import Dict, List, Optional

from .config import find_project_root, load_config
from .engine import Status, run_extraction
from .errors import RextractError
from .interaction import ScriptedInteraction, SoftChoice
from .stats import RunStats

_SOFT_CHOICES = {
    "accept": [SoftChoice.ACCEPT],
    "retry": [SoftChoice.RETRY, SoftChoice.ACCEPT],
    "abort": [SoftChoice.ABORT],
}


def position_offset(source: str, position: str) -> int:
    """Turn ``OFFSET`` or 1-based ``LINE:COL`` into a character offset."""
    if ":" not in position:
        return int(position)
    line_text, col_text = position.split(":", 1)
    line, col = int(line_text), int(col_text)
    lines = source.splitlines(keepends=True)
    if not 1 <= line <= len(lines) + 1:
        raise ValueError(f"line {line} is outside the file")
    return sum(len(text) for text in lines[: line - 1]) + col - 1


def _parse_renames(pairs: List[str]) -> Dict[str, str]:
    renames: Dict[str, str] = {}
    for pair in pairs:
        old, sep, new = pair.partition("=")
        if not sep or not old or not new:
            raise ValueError(f"--param expects OLD=NEW, got {pair!r}")
        renames[old] = new
    return renames


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rextract",
        description="Extract a range of a Rust function into a new function.",
    )
    parser.add_argument("file", help="Rust source file")
    parser.add_argument("start", help="start of the range: OFFSET or LINE:COL")
    parser.add_argument("end", help="end of the range (exclusive): OFFSET or LINE:COL")
    parser.add_argument("--name", help="name of the new function")
    parser.add_argument("--pub", action="store_true", help="make the new function pub")
    parser.add_argument(
        "--param",
        action="append",
        default=[],
        metavar="OLD=NEW",
        help="rename a parameter of the new function (repeatable)",
    )
    revert = parser.add_mutually_exclusive_group()
    revert.add_argument(
        "--revert-on-failure",
        dest="revert",
        action="store_true",
        default=True,
        help="undo the whole extraction when normalization or borrow inference"
        " fails (default)",
    )
    revert.add_argument(
        "--keep-on-failure",
        dest="revert",
        action="store_false",
        help="keep the file as it was before the failing stage",
    )
    parser.add_argument(
        "--on-lifetime-failure",
        choices=sorted(_SOFT_CHOICES),
        default="accept",
        help="what to do when lifetime repair fails (default: accept)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="print the rewritten file without running the repair tools",
    )
    parser.add_argument(
        "--suggest-name",
        action="store_true",
        help="ask the configured LLM to name the new function",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    path = Path(args.file)
    try:
        source = path.read_bytes().decode("utf-8")
        start = position_offset(source, args.start)
        end = position_offset(source, args.end)
        renames = _parse_renames(args.param)
    except (OSError, UnicodeDecodeError, ValueError) as exc:
        print(f"rextract: {exc}", file=sys.stderr)
        sys.exit(1)

    config = load_config(find_project_root(path))
    if args.suggest_name:
        config.suggest_names = True
    interaction = ScriptedInteraction(
        name=args.name,
        public=args.pub,
        parameter_renames=renames,
        revert_on_hard_failure=args.revert,
        soft_choices=_SOFT_CHOICES[args.on_lifetime_failure],
    )
    run_stats = RunStats()
    try:
        outcome = run_extraction(
            path,
            start,
            end,
            interaction,
            config=config,
            stats=run_stats,
            dry_run=args.dry_run,
        )
    except RextractError as exc:
        print(f"rextract: {exc}", file=sys.stderr)
        sys.exit(1)

    for message in outcome.messages:
        print(message)
    if outcome.preview is not None:
        print(outcome.preview, end="")
        return
    for line in run_stats.format_summary():
        print(line)
    if outcome.status in (Status.FAILED, Status.REVERTED):
        sys.exit(1)
