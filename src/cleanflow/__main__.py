"""Entry point: python -m cleanflow

Subcommands:
  validate FILE     check a CSV's structure (exit 1 when invalid)
  stats FILE        row / column / empty-cell counts
  normalize FILE    parse and re-serialize in the quarantine CSV dialect
  rules             list the rule metadata registry
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from cleanflow.core.csv_parser import available_parsers, get_csv_stats, validate_csv
from cleanflow.core.dataset import DatasetLoader
from cleanflow.core.exporters import CSVExporter
from cleanflow.core.models import RuleSeverity
from cleanflow.core.rule_metadata import RULE_IDS, RULE_METADATA

_log = logging.getLogger("cleanflow")


def _read_text(path: str, encoding: str | None) -> str:
    text, detected = DatasetLoader().decode(Path(path).read_bytes(), encoding)
    _log.debug("Read %s as %s", path, detected)
    return text


def _cmd_validate(args: argparse.Namespace) -> int:
    result = validate_csv(_read_text(args.file, args.encoding), parser=args.parser)
    if args.json:
        print(json.dumps(result.to_dict(), ensure_ascii=False, indent=2))
    elif result.valid:
        print(f"{args.file}: valid")
    else:
        print(f"{args.file}: {len(result.errors)} error(s)")
        for err in result.errors:
            print(f"  {err}")
    return 0 if result.valid else 1


def _cmd_stats(args: argparse.Namespace) -> int:
    stats = get_csv_stats(_read_text(args.file, args.encoding), parser=args.parser)
    if args.json:
        print(json.dumps(stats.to_dict(), indent=2))
    else:
        for key, value in stats.to_dict().items():
            print(f"{key:<14} {value}")
    return 0


def _cmd_normalize(args: argparse.Namespace) -> int:
    table, meta = DatasetLoader().load(args.file, parser=args.parser, encoding_hint=args.encoding)
    _log.debug("Parsed %s: %d rows, %s parser", meta.source_name, meta.shape[0], meta.parser)
    exporter = CSVExporter()
    if args.output:
        exporter.export(table, Path(args.output), include_row_id=not args.drop_row_id)
        _log.info("Wrote %d rows to %s", len(table), args.output)
    else:
        sys.stdout.write(exporter.render(table, include_row_id=not args.drop_row_id))
        sys.stdout.write("\n")
    return 0


def _cmd_rules(args: argparse.Namespace) -> int:
    rule_ids = list(RULE_IDS)
    if args.severity:
        wanted = RuleSeverity(args.severity)
        rule_ids = [r for r in rule_ids if RULE_METADATA[r].severity == wanted]
    if args.json:
        print(json.dumps({r: RULE_METADATA[r].to_dict() for r in rule_ids}, indent=2))
        return 0
    for rule_id in rule_ids:
        meta = RULE_METADATA[rule_id]
        print(f"{rule_id:<4} {meta.severity.value:<9} {meta.name}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cleanflow", description="CleanFlow quarantine CSV tools"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    def _file_command(name: str, help_text: str) -> argparse.ArgumentParser:
        p = sub.add_parser(name, help=help_text)
        p.add_argument("file", help="CSV file to read")
        p.add_argument(
            "--parser",
            choices=available_parsers(),
            default=None,
            help="Tokenizer to use (default: advanced)",
        )
        p.add_argument("--encoding", default=None, help="Override encoding detection")
        return p

    p_validate = _file_command("validate", "Check a CSV's structure")
    p_validate.add_argument("--json", action="store_true", help="JSON output")
    p_validate.set_defaults(func=_cmd_validate)

    p_stats = _file_command("stats", "Count rows, columns and empty cells")
    p_stats.add_argument("--json", action="store_true", help="JSON output")
    p_stats.set_defaults(func=_cmd_stats)

    p_norm = _file_command("normalize", "Parse and re-serialize a CSV")
    p_norm.add_argument("-o", "--output", default=None, help="Output path (default: stdout)")
    p_norm.add_argument(
        "--drop-row-id", action="store_true", help="Omit the row_id column (for re-upload)"
    )
    p_norm.set_defaults(func=_cmd_normalize)

    p_rules = sub.add_parser("rules", help="List rule metadata")
    p_rules.add_argument("--severity", choices=[s.value for s in RuleSeverity], default=None)
    p_rules.add_argument("--json", action="store_true", help="JSON output")
    p_rules.set_defaults(func=_cmd_rules)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        return args.func(args)
    except (OSError, LookupError) as exc:
        print(f"cleanflow: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
