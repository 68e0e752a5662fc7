from __future__ import annotations

import argparse
import sys
import threading
from importlib import metadata
from pathlib import Path
from typing import Mapping

import tomllib
import uvicorn
from rich.console import Console
from rich.markup import escape
from rich.progress import BarColumn, Progress, TaskProgressColumn, TextColumn, TimeElapsedColumn
from rich.prompt import Confirm, FloatPrompt, IntPrompt, Prompt

from .converter import ConversionResult, convert_epub, set_debug_logging
from .errors import ValidationError
from .logging_utils import build_uvicorn_log_config
from .markup import emphasize_text
from .options import DEFAULT_OPTIONS, BionicOptions
from .web import WebConfig, create_app


def _read_local_version() -> str | None:
    try:
        pyproject_path = Path(__file__).resolve().parents[2] / "pyproject.toml"
    except IndexError:  # pragma: no cover
        return None
    try:
        with pyproject_path.open("rb") as fh:
            data = tomllib.load(fh)
    except (FileNotFoundError, tomllib.TOMLDecodeError):
        return None
    return data.get("project", {}).get("version")


try:
    __version__ = metadata.version("bionic-epub")
except metadata.PackageNotFoundError:
    __version__ = _read_local_version() or "0.0.0+unknown"


def _add_version_flag(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"bionic-epub {__version__}",
    )


def _add_option_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-p",
        "--prefix-ratio",
        type=float,
        help=f"Maximum ratio of letters to bold, 0-1 (default {DEFAULT_OPTIONS.max_prefix_ratio}).",
    )
    parser.add_argument(
        "-m",
        "--min-length",
        type=int,
        help=f"Minimum word length to process (default {DEFAULT_OPTIONS.min_word_length}).",
    )
    parser.add_argument(
        "-x",
        "--max-prefix",
        type=int,
        help=f"Maximum number of bold letters per word (default {DEFAULT_OPTIONS.max_prefix_length}).",
    )
    parser.add_argument(
        "-u",
        "--process-uppercase",
        action="store_true",
        help="Also emphasize all-uppercase words (skipped as acronyms by default).",
    )


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="bionic-epub",
        description=(
            "Convert EPUB files to bionic reading format. "
            "Use `bionic-epub serve` for the upload server."
        ),
    )
    _add_version_flag(ap)
    ap.add_argument(
        "input_path",
        nargs="?",
        help="Path to input .epub or a directory containing .epub files",
    )
    ap.add_argument(
        "-o",
        "--output",
        help="Output file path (default: <name>-bionic.epub next to the input)",
    )
    _add_option_flags(ap)
    ap.add_argument(
        "-i",
        "--interactive",
        action="store_true",
        help="Prompt for the input file and options.",
    )
    ap.add_argument(
        "-j",
        "--workers",
        type=int,
        help="Number of threads used to rewrite documents (env BIONIC_EPUB_WORKERS).",
    )
    ap.add_argument(
        "--temp-dir",
        help="Directory for working areas (env BIONIC_EPUB_TEMP_DIR).",
    )
    ap.add_argument(
        "--debug",
        action="store_true",
        help="Print every pipeline step.",
    )
    return ap


def build_preview_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="bionic-epub preview",
        description="Print the emphasized markup for a phrase.",
    )
    _add_version_flag(ap)
    ap.add_argument(
        "text",
        nargs="+",
        help="Text to convert. Wrap the phrase in quotes if it contains spaces.",
    )
    _add_option_flags(ap)
    return ap


def build_serve_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="bionic-epub serve",
        description="Run the HTTP upload/convert server.",
    )
    _add_version_flag(ap)
    ap.add_argument(
        "--host",
        default="127.0.0.1",
        help="Host interface to bind (default: 127.0.0.1).",
    )
    ap.add_argument(
        "--port",
        type=int,
        default=3000,
        help="Port to listen on (default: 3000).",
    )
    ap.add_argument(
        "--temp-dir",
        help="Directory for uploads and working areas (env BIONIC_EPUB_TEMP_DIR).",
    )
    ap.add_argument(
        "-j",
        "--workers",
        type=int,
        help="Number of threads used to rewrite documents per conversion.",
    )
    ap.add_argument(
        "--debug",
        action="store_true",
        help="Verbose server and pipeline logging.",
    )
    return ap


def _options_from_args(args: argparse.Namespace) -> BionicOptions:
    return BionicOptions.from_payload(
        {
            "max_prefix_ratio": args.prefix_ratio,
            "min_word_length": args.min_length,
            "max_prefix_length": args.max_prefix,
            "skip_uppercase": not args.process_uppercase,
        }
    )


def _ask_input_path(console: Console) -> Path:
    while True:
        raw = Prompt.ask("Enter the path to your EPUB file", console=console).strip()
        path = Path(raw).expanduser()
        if not path.exists():
            console.print("[red]File does not exist. Please enter a valid path.[/red]")
            continue
        if path.suffix.lower() != ".epub":
            console.print("[red]File must be an EPUB file.[/red]")
            continue
        return path


def _ask_ratio(console: Console) -> float:
    while True:
        value = FloatPrompt.ask(
            "Maximum ratio of letters to bold (0-1)",
            default=DEFAULT_OPTIONS.max_prefix_ratio,
            console=console,
        )
        if 0 <= value <= 1:
            return value
        console.print("[red]Please enter a number between 0 and 1[/red]")


def _ask_positive(console: Console, label: str, default: int) -> int:
    while True:
        value = IntPrompt.ask(label, default=default, console=console)
        if value > 0:
            return value
        console.print("[red]Please enter a positive number[/red]")


def _prompt_for_options(console: Console) -> tuple[Path, BionicOptions]:
    mode = Prompt.ask(
        "Choose conversion mode",
        choices=["basic", "custom"],
        default="basic",
        console=console,
    )
    input_path = _ask_input_path(console)
    if mode != "custom":
        return input_path, DEFAULT_OPTIONS
    ratio = _ask_ratio(console)
    min_length = _ask_positive(console, "Minimum word length to process", DEFAULT_OPTIONS.min_word_length)
    max_prefix = _ask_positive(console, "Maximum prefix length", DEFAULT_OPTIONS.max_prefix_length)
    process_uppercase = Confirm.ask("Process uppercase words?", default=False, console=console)
    options = BionicOptions(
        max_prefix_ratio=ratio,
        min_word_length=min_length,
        max_prefix_length=max_prefix,
        skip_uppercase=not process_uppercase,
    ).validate()
    return input_path, options


class _RichProgress:
    def __init__(self, console: Console, label: str) -> None:
        self.console = console
        self.enabled = console.is_terminal
        self.lock = threading.Lock()
        self.progress: Progress | None = None
        self.task_id = None
        if not self.enabled:
            return
        self.progress = Progress(
            TextColumn("{task.description}", justify="left"),
            BarColumn(bar_width=None),
            TaskProgressColumn(),
            TimeElapsedColumn(),
            TextColumn("{task.fields[detail]}", justify="left"),
            console=console,
            transient=True,
        )
        self.progress.start()
        self.task_id = self.progress.add_task(label, total=None, detail="extracting")

    def handle(self, event: Mapping[str, object]) -> None:
        if self.progress is None or self.task_id is None:
            return
        event_type = event.get("event")
        with self.lock:
            if event_type == "extract":
                total = event.get("total")
                self.progress.update(self.task_id, detail=f"{total} files extracted")
            elif event_type == "document":
                index = event.get("index")
                total = event.get("total")
                source = event.get("source")
                name = source.name if isinstance(source, Path) else str(source or "")
                if isinstance(total, int) and total > 0:
                    self.progress.update(self.task_id, total=total)
                self.progress.advance(self.task_id, 1)
                self.progress.update(self.task_id, detail=f"{index}/{total} {name}")
            elif event_type == "pack":
                self.progress.update(self.task_id, detail="packing")
            elif event_type == "done":
                self.progress.update(self.task_id, detail="done")

    def close(self) -> None:
        if self.progress is None:
            return
        with self.lock:
            self.progress.stop()


def _convert_one(
    console: Console,
    input_path: Path,
    options: BionicOptions,
    *,
    output_path: Path | None = None,
    temp_root: Path | None = None,
    workers: int | None = None,
) -> ConversionResult:
    progress = _RichProgress(console, input_path.name)
    try:
        result = convert_epub(
            input_path,
            options,
            temp_root=temp_root,
            workers=workers,
            output_path=output_path,
            progress=progress.handle,
        )
    finally:
        progress.close()
    if result.success:
        console.print(f"[green]Success! Output saved to: {escape(str(result.output_path))}[/green]")
    else:
        console.print(f"[red]Failed to convert {escape(input_path.name)}: {escape(result.message or '')}[/red]")
    return result


def _run_preview(args: argparse.Namespace) -> int:
    try:
        options = _options_from_args(args)
    except ValidationError as exc:
        raise SystemExit(str(exc)) from exc
    text = " ".join(args.text).strip()
    if not text:
        raise SystemExit("No text provided for preview.")
    print(emphasize_text(text, options))
    return 0


def _run_serve(args: argparse.Namespace) -> int:
    set_debug_logging(bool(args.debug))
    config = WebConfig(
        temp_root=Path(args.temp_dir).expanduser().resolve() if args.temp_dir else None,
    )
    if args.workers:
        config.workers = max(1, args.workers)
    app = create_app(config)
    print(f"Server running at http://{args.host}:{args.port}/")
    print("Press Ctrl+C to stop.\n")
    uvicorn.run(
        app,
        host=args.host,
        port=args.port,
        log_config=build_uvicorn_log_config(debug=bool(args.debug)),
        log_level="debug" if args.debug else "info",
    )
    return 0


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]

    if argv and argv[0] == "preview":
        return _run_preview(build_preview_parser().parse_args(argv[1:]))
    if argv and argv[0] == "serve":
        return _run_serve(build_serve_parser().parse_args(argv[1:]))

    parser = build_parser()
    args = parser.parse_args(argv)
    set_debug_logging(bool(args.debug))
    console = Console(stderr=True)
    temp_root = Path(args.temp_dir).expanduser().resolve() if args.temp_dir else None
    workers = max(1, args.workers) if args.workers else None

    if args.interactive or (args.input_path is None and sys.stdin.isatty()):
        inp_path, options = _prompt_for_options(console)
        result = _convert_one(console, inp_path, options, temp_root=temp_root, workers=workers)
        return 0 if result.success else 1

    if args.input_path is None:
        parser.print_help()
        return 0

    try:
        options = _options_from_args(args)
    except ValidationError as exc:
        console.print(f"[red]Invalid options: {escape(str(exc))}[/red]")
        return 2

    inp_path = Path(args.input_path).expanduser()
    if not inp_path.exists():
        console.print(f"[red]Input path not found: {escape(str(inp_path))}[/red]")
        return 1

    if inp_path.is_dir():
        if args.output:
            raise SystemExit("--output cannot be used when processing a directory.")
        epubs = sorted(
            p
            for p in inp_path.iterdir()
            if p.suffix.lower() == ".epub" and not p.stem.endswith("-bionic")
        )
        if not epubs:
            console.print(f"[red]No .epub files found in directory: {escape(str(inp_path))}[/red]")
            return 1
        failures = 0
        for epub_path in epubs:
            result = _convert_one(console, epub_path, options, temp_root=temp_root, workers=workers)
            if not result.success:
                failures += 1
        return 1 if failures else 0

    if inp_path.suffix.lower() != ".epub":
        console.print(f"[red]Input must be an .epub file or directory: {escape(str(inp_path))}[/red]")
        return 1
    output_path = Path(args.output).expanduser() if args.output else None
    result = _convert_one(
        console,
        inp_path,
        options,
        output_path=output_path,
        temp_root=temp_root,
        workers=workers,
    )
    return 0 if result.success else 1


if __name__ == "__main__":
    raise SystemExit(main())
