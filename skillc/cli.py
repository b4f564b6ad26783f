"""CLI entrypoints for skillc commands."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from .config import CONFIG_KEYS, INSTRUCTIONS_FILENAME, list_config, reset_config, set_config_value
from .errors import SkillcError
from .logging import configure_logging
from .orchestrator import Orchestrator
from .service.app import DEFAULT_PORT, run_service


def _add_verbose_option(
    parser: argparse.ArgumentParser, *, suppress_default: bool = False
) -> None:
    kwargs: dict[str, object] = {
        "action": "store_true",
        "help": "Show prompt sizes, token usage and timing.",
    }
    if suppress_default:
        kwargs["default"] = argparse.SUPPRESS
    else:
        kwargs["default"] = False
    parser.add_argument(
        "-v",
        "--verbose",
        **kwargs,
    )


def _add_instructions_option(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--instructions",
        default=INSTRUCTIONS_FILENAME,
        help=f"Path to the instructions file (defaults to ./{INSTRUCTIONS_FILENAME}).",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="skillc",
        description="Compile interface specs and authored instructions into skill and llms.txt artifacts.",
    )
    _add_verbose_option(parser)
    parser.add_argument(
        "--log-file",
        type=Path,
        help="Also write debug-level logs to this file.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    generate_parser = subparsers.add_parser(
        "generate",
        help="Generate artifacts from spec sources and instructions.",
    )
    _add_verbose_option(generate_parser, suppress_default=True)
    _add_instructions_option(generate_parser)
    generate_parser.add_argument("--spec", help="Spec file path (overrides the frontmatter).")
    generate_parser.add_argument("--out", help="Output directory (overrides the frontmatter).")
    generate_parser.add_argument(
        "--only",
        action="append",
        default=[],
        help="Generate only these artifacts (comma-separated, repeatable).",
    )
    generate_parser.add_argument(
        "--force",
        action="store_true",
        help="Bypass the fingerprint cache and regenerate every artifact.",
    )
    generate_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report what would be generated without calling the provider.",
    )
    generate_parser.add_argument(
        "--diff",
        action="store_true",
        help="Show changes against existing files instead of writing them.",
    )
    generate_parser.add_argument("--model", help="Model to use (overrides all other config).")
    generate_parser.add_argument("--provider", help="Provider to use (overrides all other config).")
    generate_parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Abort the run after this many seconds.",
    )

    init_parser = subparsers.add_parser(
        "init",
        help=f"Draft a {INSTRUCTIONS_FILENAME} from a spec.",
    )
    _add_verbose_option(init_parser, suppress_default=True)
    init_parser.add_argument("--name", required=True, help="Project or tool name.")
    init_parser.add_argument("--spec", help="Spec file path or CLI binary name.")
    init_parser.add_argument(
        "--type",
        dest="spec_type",
        choices=("openapi", "cli", "codebase"),
        help="Spec type (defaults to detection by file extension).",
    )
    init_parser.add_argument("--force", action="store_true", help="Overwrite an existing file.")
    init_parser.add_argument(
        "path",
        nargs="?",
        default=".",
        help="Directory to create the file in (defaults to current directory).",
    )

    validate_parser = subparsers.add_parser(
        "validate",
        help="Check the instructions file and parse every spec source.",
    )
    _add_verbose_option(validate_parser, suppress_default=True)
    _add_instructions_option(validate_parser)

    diff_parser = subparsers.add_parser(
        "diff",
        help="Compare recorded fingerprints against current inputs.",
    )
    _add_verbose_option(diff_parser, suppress_default=True)
    _add_instructions_option(diff_parser)
    diff_parser.add_argument("--against", help="Directory of artifacts to compare the output against.")

    serve_parser = subparsers.add_parser(
        "serve",
        help="Serve generated artifacts locally.",
    )
    _add_verbose_option(serve_parser, suppress_default=True)
    _add_instructions_option(serve_parser)
    serve_parser.add_argument("--dir", dest="directory", help="Directory containing generated artifacts.")
    serve_parser.add_argument("--port", type=int, default=DEFAULT_PORT, help="Port to serve on.")

    config_parser = subparsers.add_parser("config", help="Manage user provider settings.")
    config_subparsers = config_parser.add_subparsers(dest="config_command", required=True)
    set_parser = config_subparsers.add_parser("set", help="Set a configuration value.")
    set_parser.add_argument("key", choices=CONFIG_KEYS)
    set_parser.add_argument("value")
    config_subparsers.add_parser("list", help="List current configuration.")
    config_subparsers.add_parser("reset", help="Remove all saved configuration.")

    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entrypoint for skillc commands."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    verbose = bool(getattr(args, "verbose", False))
    configure_logging(verbose=verbose, log_file=getattr(args, "log_file", None))

    orchestrator = Orchestrator()

    if args.command == "generate":
        only = [item for raw in args.only for item in raw.split(",") if item.strip()]
        try:
            report = orchestrator.run_generate(
                args.instructions,
                spec=args.spec,
                out=args.out,
                only=only,
                force=bool(args.force),
                dry_run=bool(args.dry_run),
                diff=bool(args.diff),
                verbose=verbose,
                model=args.model,
                provider=args.provider,
                timeout=args.timeout,
            )
        except SkillcError as exc:
            parser.exit(1, f"skillc generate failed: {exc}\n")
        outcome = report.outcome
        if outcome.up_to_date:
            print("All artifacts up to date; nothing to generate.")
            return
        for result in outcome.results:
            status = "skipped" if result.skipped else "generated"
            if args.dry_run:
                status = result.content
            token_info = ""
            if verbose and result.response is not None:
                token_info = f" (in: {result.response.tokens_in}, out: {result.response.tokens_out} tokens)"
            print(f"  {result.artifact_id}: {status}{token_info}")
        if args.dry_run:
            print(f"Dry run complete ({outcome.elapsed:.1f}s)")
        elif args.diff:
            if not report.changes:
                print("No changes.")
            for change in report.changes:
                label = "new file" if change.kind == "added" else change.kind
                print(f"--- {change.path} ({label}) ---")
                diff = report.diffs.get(change.path)
                if diff:
                    print(diff)
        else:
            print(f"Generation complete ({outcome.elapsed:.1f}s); output written to {_relativize(report.output_dir)}")
    elif args.command == "init":
        try:
            path = orchestrator.run_init(
                args.path,
                name=args.name,
                spec=args.spec,
                spec_type=args.spec_type,
                force=bool(args.force),
            )
        except SkillcError as exc:
            parser.exit(1, f"skillc init failed: {exc}\n")
        print(f"Created {_relativize(path)}; review and customize before running `skillc generate`")
    elif args.command == "validate":
        try:
            report = orchestrator.run_validate(args.instructions)
        except SkillcError as exc:
            parser.exit(1, f"skillc validate failed: {exc}\n")
        for warning in report.warnings:
            print(f"WARNING: {warning}", file=sys.stderr)
        if not report.ok:
            for error in report.errors:
                print(f"ERROR: {error}", file=sys.stderr)
            parser.exit(1, "Validation failed\n")
        print(f"Spec valid: {report.operations} operations, {report.types} types")
        print("Validation passed")
    elif args.command == "diff":
        try:
            drift = orchestrator.run_diff(args.instructions, against=args.against)
        except SkillcError as exc:
            parser.exit(1, f"skillc diff failed: {exc}\n")
        for artifact_id in drift.stale_artifacts:
            print(f"  DRIFTED: {artifact_id}")
        for change in drift.file_changes:
            print(f"  {change.kind.upper()}: {change.path}")
        if drift.drifted:
            parser.exit(
                1,
                "Spec or instructions have changed since last generation.\n"
                "Run `skillc generate` to update artifacts.\n",
            )
        print("All artifacts up to date.")
    elif args.command == "serve":
        directory = args.directory
        if not directory:
            try:
                directory = str(orchestrator.load(args.instructions).output_dir())
            except SkillcError:
                directory = "./skillc-out/"
        if not Path(directory).is_dir():
            parser.exit(1, f"directory {directory} does not exist; run `skillc generate` first\n")
        print(f"Serving {directory} at http://localhost:{args.port}")
        run_service(directory, port=args.port)
    elif args.command == "config":
        try:
            if args.config_command == "set":
                set_config_value(args.key, args.value)
                print(f"Set {args.key}")
            elif args.config_command == "list":
                for key, value in list_config().items():
                    shown = value or "(not set)"
                    if key == "api-key" and value:
                        shown = value[:4] + "..." if len(value) > 8 else "****"
                    print(f"{key:<10} {shown}")
            else:
                reset_config()
                print("Config reset to defaults")
        except SkillcError as exc:
            parser.exit(1, f"skillc config failed: {exc}\n")
    else:  # pragma: no cover - argparse enforces choices
        parser.exit(1, "Unknown command\n")


def _relativize(path: Path) -> str:
    try:
        return str(path.relative_to(Path.cwd()))
    except ValueError:
        return str(path)


if __name__ == "__main__":
    main(sys.argv[1:])
