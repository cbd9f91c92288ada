from __future__ import annotations

import argparse
from functools import partial
from pathlib import Path
from typing import Any, Never, Sequence

from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich_argparse import RawTextRichHelpFormatter
from py_workbench import WorkerClient, WorkerError
from py_workbench import worker

_CONSOLE = Console(no_color=False)


class _CLIHelpFormatter(RawTextRichHelpFormatter):
    """Rich formatter with explicit high-contrast CLI styles.

    Example:
        ```python
        parser = argparse.ArgumentParser(formatter_class=_CLIHelpFormatter)
        ```
    """

    styles = {
        "argparse.args": "bold cyan",
        "argparse.groups": "bold magenta",
        "argparse.help": "white",
        "argparse.metavar": "bold yellow",
        "argparse.prog": "bold bright_blue",
        "argparse.syntax": "bold bright_white",
        "argparse.text": "bright_white",
    }


_HELP_FORMATTER = partial(
    _CLIHelpFormatter,
    max_help_position=34,
    width=120,
)


class _RichArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that renders errors via Rich.

    Example:
        ```python
        parser = _RichArgumentParser(prog="python -m pwb")
        ```
    """

    def error(self, message: str) -> Never:
        """Render parse errors with Rich and exit.

        Example:
            ```python
            # parser.error("invalid usage")
            ```
        """
        _CONSOLE.print(Panel.fit(f"[bold red]Error:[/bold red] {message}", border_style="red"))
        self.print_help()
        raise SystemExit(2)

    def print_help(self, file: Any | None = None) -> None:
        """Render help text to the target stream.

        Example:
            ```python
            parser.print_help()
            ```
        """
        super().print_help(file=file)


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI parser for running and driving workbench workers.

    Example:
        ```python
        parser = build_parser()
        ```
    """
    parser = _RichArgumentParser(
        prog="python -m pwb",
        description=(
            "py-workbench CLI\n"
            "Evaluate Python fragments in a persistent worker session.\n"
            "Bindings, the last value and the last error survive between fragments."
        ),
        epilog=(
            "Quick Examples:\n"
            "  python -m pwb eval 'a = 20' 'a + 22'\n"
            "  python -m pwb run scratch.py\n"
            "  python -m pwb --timeout-seconds 5 eval 'while True: pass'\n\n"
            "Worker Examples:\n"
            "  PY_WORKBENCH_TOKEN=secret python -m pwb serve\n"
            "  PY_WORKBENCH_TOKEN=secret PY_WORKBENCH_DEBUG=1 python -m pwb serve"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    parser.add_argument(
        "--timeout-seconds",
        type=int,
        help=(
            "Per-fragment timeout for the spawned worker (default: 30).\n"
            "Use 0 to disable the timeout."
        ),
    )
    parser.add_argument(
        "--cwd",
        help="Working directory sent with every fragment (default: current directory).",
    )
    parser.add_argument(
        "--show-cleaned",
        action="store_true",
        help="Also show the code as rewritten before evaluation.",
    )

    sub = parser.add_subparsers(
        dest="command",
        required=True,
        parser_class=_RichArgumentParser,
    )

    sub.add_parser(
        "serve",
        help="Run a worker on stdin/stdout.",
        description=(
            "Serve framed requests on stdin and answer on stdout.\n"
            "Reads PY_WORKBENCH_TOKEN (required), PY_WORKBENCH_DEBUG,\n"
            "PY_WORKBENCH_LOG and PY_WORKBENCH_TIMEOUT from the environment."
        ),
        formatter_class=_HELP_FORMATTER,
    )

    eval_cmd = sub.add_parser(
        "eval",
        help="Evaluate fragments in one fresh session.",
        description=(
            "Evaluate each fragment in order in the same worker session.\n"
            "Later fragments see bindings created by earlier ones."
        ),
        epilog=(
            "Examples:\n"
            "  python -m pwb eval 'import math' 'math.sqrt(81)'\n"
            "  python -m pwb eval 'class User: pass' 'class User: pass'"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    eval_cmd.add_argument("fragments", nargs="+", metavar="fragment")

    run_cmd = sub.add_parser(
        "run",
        help="Evaluate a file as a single fragment.",
        description="Read a Python file and evaluate its contents as one fragment.",
        epilog=(
            "Example:\n"
            "  python -m pwb run scratch.py"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    run_cmd.add_argument("path")

    return parser


def build_client(args: argparse.Namespace) -> WorkerClient:
    """Spawn a worker client from global CLI flags.

    Example:
        ```python
        client = build_client(args)
        ```
    """
    return WorkerClient(timeout_seconds=args.timeout_seconds, cwd=args.cwd)


def _print_result(result: Any, show_cleaned: bool) -> None:
    """Render one successful evaluation.

    Example:
        ```python
        _print_result(client.evaluate("1 + 1"), show_cleaned=False)
        ```
    """
    if result.stdout:
        _CONSOLE.print(Panel(result.stdout.rstrip("\n"), title="Output", border_style="cyan"))
    _CONSOLE.print(Panel(result.return_value, title="Return Value", border_style="green"))
    if show_cleaned and result.cleaned:
        _CONSOLE.print(
            Panel(Syntax(result.cleaned, "python"), title="Cleaned Code", border_style="magenta")
        )


def _evaluate_all(client: WorkerClient, fragments: list[str], show_cleaned: bool) -> int:
    """Evaluate fragments in order; return 1 if any of them failed.

    Example:
        ```python
        code = _evaluate_all(client, ["a = 1", "a"], show_cleaned=False)
        ```
    """
    status = 0
    for fragment in fragments:
        try:
            result = client.evaluate(fragment)
        except WorkerError as exc:
            _CONSOLE.print(Panel.fit(str(exc), title="Error", style="bold red"))
            status = 1
            continue
        _print_result(result, show_cleaned)
    return status


def main(argv: Sequence[str] | None = None) -> int:
    """Run the `pwb` CLI command handler.

    Example:
        ```python
        code = main(["eval", "1 + 1"])
        ```
    """
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    if args.command == "serve":
        return worker.main()

    if args.command == "run":
        path = Path(args.path)
        if not path.is_file():
            _CONSOLE.print(Panel.fit(f"No such file '{args.path}'", style="bold red"))
            return 1
        fragments = [path.read_text(encoding="utf-8")]
    elif args.command == "eval":
        fragments = list(args.fragments)
    else:
        parser.error("Unhandled command")

    with build_client(args) as client:
        return _evaluate_all(client, fragments, args.show_cleaned)
