"""
Command-line interface.

Provides subcommands to build a model from a JSON description, inspect and
check a model file, and run it.

Usage:
    $ stox build model.json model.sxm
    $ stox check model.sxm
    $ stox run model.sxm -n 1000 -i 500 -e 0.0001 -o output.txt --plot output.png
"""
import argparse
import json
import logging
import os
import sys
from typing import Optional

from stox.config import (
    DEFAULT_EPSILON,
    DEFAULT_INITIAL_POPULATION,
    DEFAULT_ITERATIONS,
    APP_VERSION,
)
from stox.controller.simulation import SimulationEngine
from stox.logging_config import setup_logging
from stox.model.errors import StoxError
from stox.model.io import IOManager, SessionSettings
from stox.model.state import Model
from stox.model.validator import ConsistencyWarning, assign_hierarchical_ids

logger = logging.getLogger(__name__)


def _open(path: str) -> Model:
    model = Model()
    IOManager.load_model(model, path)
    return model


def _parse_setting(text: str, kind: type, default):
    """Convert a remembered field text, falling back to the default."""
    if not text:
        return default
    try:
        return kind(text)
    except ValueError:
        logger.warning(f"Ignoring remembered value '{text}', using {default}.")
        return default


def cmd_build(args: argparse.Namespace) -> int:
    """Build a model file from a JSON description."""
    with open(args.description, "r", encoding="utf-8") as f:
        description = json.load(f)
    model = Model.from_dict(description)
    IOManager.save_model(model, args.model)
    print(f"Model saved to {args.model} ({len(model.tree)} stages, {len(model.tables)} castings)")
    return 0


def cmd_dump(args: argparse.Namespace) -> int:
    """Write the JSON description of a model file."""
    model = _open(args.model)
    text = json.dumps(model.to_dict(), indent=2)
    if args.output:
        with open(args.output, "w", encoding="utf-8") as f:
            f.write(text + "\n")
        print(f"Model description saved to {args.output}")
    else:
        print(text)
    return 0


def cmd_show(args: argparse.Namespace) -> int:
    """Print the stage tree and the castings of a model file."""
    model = _open(args.model)
    assign_hierarchical_ids(model.tree)
    for level, stage in model.tree.walk():
        mark = "*" if stage.report else " "
        print(f"{mark} {'  ' * level}{stage.name} [{stage.casting_ref or '-'}] ({stage.hierarchical_id})")
    for name in model.table_names():
        table = model.tables[name]
        print(f"\nCasting '{name}' ({table.rows}x{table.cols})")
        for row in table.to_list():
            print("\t".join(f"{v:g}" for v in row))
    return 0


def _check(model: Model, strict: bool) -> bool:
    def on_warning(warning: ConsistencyWarning) -> bool:
        print(f"Warning: {warning.message}")
        return not strict

    report = model.validate(on_warning=on_warning)
    if report.error is not None:
        print(f"Error: {report.error}", file=sys.stderr)
    print(report.summary)
    return report.ok


def cmd_check(args: argparse.Namespace) -> int:
    """Check a model file for consistency."""
    model = _open(args.model)
    return 0 if _check(model, args.strict) else 1


def cmd_run(args: argparse.Namespace) -> int:
    """Check and run a model file."""
    settings = IOManager.load_settings(args.settings)
    n = args.initial if args.initial is not None else _parse_setting(
        settings.initial_pop_text, float, DEFAULT_INITIAL_POPULATION)
    iters = args.iterations if args.iterations is not None else _parse_setting(
        settings.iters_text, int, DEFAULT_ITERATIONS)
    eps = args.epsilon if args.epsilon is not None else _parse_setting(
        settings.eps_text, float, DEFAULT_EPSILON)

    model = _open(args.model)
    if not _check(model, args.strict):
        print("Cannot run a model not validated by checking.", file=sys.stderr)
        return 1

    engine = SimulationEngine(seed=args.seed)
    output = model.run(n=n, iters=iters, eps=eps, engine=engine)

    if args.output:
        IOManager.export_output(output, args.output)
        print(f"Model output saved to {args.output}")
    else:
        sys.stdout.write(output.to_tsv())

    if args.plot:
        from stox.view.plots import plot_output
        plot_output(output, args.plot)
        print(f"Output plot saved to {args.plot}")

    IOManager.save_settings(
        SessionSettings(
            last_path=os.path.dirname(os.path.abspath(args.model)),
            iters_text=str(iters),
            initial_pop_text=f"{n:g}",
            eps_text=f"{eps:g}",
        ),
        args.settings
    )
    return 0


def main(argv: Optional[list] = None) -> int:
    """Main CLI entrypoint."""
    parser = argparse.ArgumentParser(
        prog="stox",
        description="StoX - Stochastic multistage recruitment model"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {APP_VERSION}")
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Verbose (debug) logging"
    )
    parser.add_argument("--log-file", help="Also write the log to this file")
    parser.add_argument(
        "--settings",
        default=None,
        help="Session settings file (default: $STOX_SETTINGS or ./Stox.ini)"
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    build_parser = subparsers.add_parser("build", help="Build a model file from a JSON description")
    build_parser.add_argument("description", help="JSON model description")
    build_parser.add_argument("model", help="Model file to write")
    build_parser.set_defaults(func=cmd_build)

    dump_parser = subparsers.add_parser("dump", help="Write the JSON description of a model file")
    dump_parser.add_argument("model", help="Model file")
    dump_parser.add_argument("--output", "-o", help="Output file (JSON); stdout if omitted")
    dump_parser.set_defaults(func=cmd_dump)

    show_parser = subparsers.add_parser("show", help="Print the stages and castings of a model file")
    show_parser.add_argument("model", help="Model file")
    show_parser.set_defaults(func=cmd_show)

    check_parser = subparsers.add_parser("check", help="Check a model file for consistency")
    check_parser.add_argument("model", help="Model file")
    check_parser.add_argument("--strict", action="store_true", help="Abort the check at the first casting warning")
    check_parser.set_defaults(func=cmd_check)

    run_parser = subparsers.add_parser("run", help="Check and run a model file")
    run_parser.add_argument("model", help="Model file")
    run_parser.add_argument("-n", "--initial", type=float, help="Initial population")
    run_parser.add_argument("-i", "--iterations", type=int, help="Number of iterations")
    run_parser.add_argument("-e", "--epsilon", type=float, help="Quasi-zero value replacing zero probabilities")
    run_parser.add_argument("--seed", type=int, help="Seed for reproducible runs")
    run_parser.add_argument("--output", "-o", help="Output file (.txt tab separated, .html table); stdout if omitted")
    run_parser.add_argument("--plot", help="Save a plot of the run to this image file")
    run_parser.add_argument("--strict", action="store_true", help="Abort the check at the first casting warning")
    run_parser.set_defaults(func=cmd_run)

    args = parser.parse_args(argv)

    setup_logging(level=logging.DEBUG if args.verbose else logging.WARNING, log_file=args.log_file)

    if not args.command:
        parser.print_help()
        return 0

    try:
        return args.func(args)
    except (StoxError, OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
