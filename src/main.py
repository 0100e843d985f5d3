#!/usr/bin/env python3
"""
FMEA Workbench: CLI entrypoint.

Usage:
  python src/main.py init                                  # Create the data file
  python src/main.py risk <failure_mode_id>                # Worst-case RPN and band
  python src/main.py delete <entity_type> <id>             # Cascading delete
  python src/main.py metrics <project_id>                  # Dashboard metrics
  python src/main.py report <project_id> --output-dir out  # HTML report
  python src/main.py suggest cause --project P --failure-mode F

Entity types for delete: organization, project, component, failure_mode,
cause, effect, control, action.

Suggestion kinds: failure-mode, cause, effect, control, action (3-5 new
items), severity, occurrence, detection (a single rating) and explain (a
prose explanation of the failure mode's risk). Every kind except
failure-mode needs --failure-mode.

Environment (a .env file in the working directory is read too):
  FMEA_DATA_PATH       JSON datastore file (default: data/fmea-data.json)
  ANTHROPIC_API_KEY    Required for suggest
  FMEA_AI_MODEL        Claude model (default: claude-sonnet-4-20250514)

Output:
  - JSON printed to stdout
  - Progress and errors on stderr; exit status 1 on any error
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Optional

# Allow running from the repository root as well as src/
sys.path.insert(0, str(Path(__file__).parent))

from dotenv import load_dotenv
from pydantic import ValidationError

from agent import AIServiceError, FMEAAssistant, build_context
from config import AppConfig
from datastore import DatastoreError, JSONDatastore
from integrity import ENTITY_TYPES
from metrics import project_metrics
from prompts import PROMPTS, SCALE_HINTS
from repository import EntityNotFoundError, FMEARepository
from ui.renderer import render_project_report

SUGGEST_KINDS = (*PROMPTS, *SCALE_HINTS, "explain")


def _emit(payload: Any) -> None:
    print(json.dumps(payload, indent=2))


def _progress(message: str) -> None:
    print(f"[FMEA] {message}", file=sys.stderr)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fmea",
        description="FMEA Workbench: RPN scoring, cascading deletes, metrics and AI suggestions",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--data",
        help="Path to the JSON datastore (overrides FMEA_DATA_PATH)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init", help="Create the data file with empty collections")

    risk = sub.add_parser("risk", help="Print a failure mode with its worst-case RPN and band")
    risk.add_argument("failure_mode_id")

    delete = sub.add_parser("delete", help="Delete an entity and everything it owns")
    delete.add_argument("entity_type", choices=ENTITY_TYPES)
    delete.add_argument("entity_id")

    metrics = sub.add_parser("metrics", help="Print dashboard metrics for a project")
    metrics.add_argument("project_id")

    report = sub.add_parser("report", help="Write an HTML FMEA report for a project")
    report.add_argument("project_id")
    report.add_argument(
        "--output-dir",
        default=".",
        help="Directory to write fmea_report.html (default: current directory)",
    )

    suggest = sub.add_parser("suggest", help="Ask Claude for FMEA suggestions")
    suggest.add_argument("kind", choices=SUGGEST_KINDS)
    suggest.add_argument("--project", required=True, help="Project ID")
    suggest.add_argument("--failure-mode", help="Failure mode ID (required for every kind but failure-mode)")

    return parser


def _run(args: argparse.Namespace, config: AppConfig) -> int:
    store = JSONDatastore(config.data_path)

    if args.command == "init":
        existed = store.path.exists()
        store.initialize()
        _progress(f"Datastore {'already exists' if existed else 'created'}: {store.path}")
        return 0

    if args.command == "risk":
        detail = FMEARepository(store).get_failure_mode_detail(args.failure_mode_id)
        _emit(detail.to_json_dict())
        _progress(f"RPN {detail.risk.max_rpn} ({detail.band.label})")
        return 0

    if args.command == "delete":
        result = FMEARepository(store).delete(args.entity_type, args.entity_id)
        _emit(result.model_dump())
        if not result.found:
            _progress(f"{args.entity_type} not found: {args.entity_id}")
            return 1
        _progress(f"Deleted {args.entity_type} {args.entity_id}: {sum(result.removed.values())} record(s) removed")
        return 0

    if args.command == "metrics":
        _emit(project_metrics(store.load(), args.project_id).model_dump())
        return 0

    if args.command == "report":
        html = render_project_report(store.load(), args.project_id)
        output_dir = Path(args.output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        html_path = output_dir / "fmea_report.html"
        with open(html_path, "w", encoding="utf-8") as f:
            f.write(html)
        _progress(f"HTML report saved: {html_path}")
        _emit({"project_id": args.project_id, "report": str(html_path)})
        return 0

    if args.command == "suggest":
        return _suggest(args, store, FMEAAssistant(config))

    raise ValueError(f"Unknown command '{args.command}'")


def _suggest(args: argparse.Namespace, store: JSONDatastore, assistant: FMEAAssistant) -> int:
    if args.kind != "failure-mode" and not args.failure_mode:
        raise ValueError(f"--failure-mode is required for '{args.kind}' suggestions")

    prompt_kind = args.kind if args.kind in PROMPTS else "failure-mode"
    context = build_context(store.load(), args.project, prompt_kind, args.failure_mode)
    _progress(f"Requesting {args.kind} suggestions from Claude...")

    if args.kind in PROMPTS:
        _emit(assistant.suggest(args.kind, context).model_dump())
    elif args.kind in SCALE_HINTS:
        _emit(assistant.suggest_risk_score(args.kind, context).model_dump())
    else:
        _emit({"explanation": assistant.explain_risk(context)})
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)

    config = AppConfig.from_env()
    if args.data:
        config = config.model_copy(update={"data_path": Path(args.data)})

    try:
        return _run(args, config)
    except EntityNotFoundError as e:
        print(f"ERROR: {e}", file=sys.stderr)
    except ValidationError as e:
        print(f"ERROR: Invalid data: {e}", file=sys.stderr)
    except (DatastoreError, AIServiceError, ValueError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
    return 1


if __name__ == "__main__":
    sys.exit(main())
