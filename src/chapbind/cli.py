from __future__ import annotations

import argparse
import sys
import threading
from importlib import metadata
from pathlib import Path

from rich.console import Console
from rich.progress import (
    BarColumn,
    Progress,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)

import tomllib

from .config import BookMetadata, ConversionConfig, load_book_metadata
from .logging_utils import set_debug_logging
from .pipeline import ConversionResult, convert_file


def _read_local_version() -> str | None:
    try:
        pyproject_path = Path(__file__).resolve().parents[2] / "pyproject.toml"
    except IndexError:  # pragma: no cover - defensive
        return None
    try:
        with pyproject_path.open("rb") as fh:
            data = tomllib.load(fh)
    except (FileNotFoundError, tomllib.TOMLDecodeError):
        return None
    return data.get("project", {}).get("version")


try:
    __version__ = metadata.version("chapbind")
except metadata.PackageNotFoundError:
    __version__ = _read_local_version() or "0.0.0+unknown"


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="chapbind",
        description="Bind an aggregated multi-chapter HTML document into an EPUB with working cross-chapter links.",
    )
    ap.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"chapbind {__version__}",
    )
    ap.add_argument("input_path", help="Path to the aggregated HTML document")
    ap.add_argument(
        "-o",
        "--output",
        help="Output .epub path (defaults to the input path with an .epub suffix)",
    )
    ap.add_argument("--cover", help="Cover image to embed")
    ap.add_argument(
        "--images-dir",
        help="Also write downloaded images into this directory",
    )
    ap.add_argument(
        "--metadata",
        help="JSON file with title, creator, publisher, language, identifier and modified",
    )
    ap.add_argument("--title", help="Book title (overrides --metadata)")
    ap.add_argument("--author", help="Book author (overrides --metadata)")
    ap.add_argument(
        "--modified",
        help="Fixed dcterms:modified timestamp, e.g. 2024-01-01T00:00:00Z, for reproducible output",
    )
    ap.add_argument(
        "-j",
        "--jobs",
        type=int,
        default=4,
        help="Concurrent image downloads (default: 4)",
    )
    ap.add_argument(
        "--timeout",
        type=float,
        default=10.0,
        help="Per-image download timeout in seconds (default: 10)",
    )
    ap.add_argument(
        "--debug",
        action="store_true",
        help="Print link-resolution and image tracing to stderr",
    )
    return ap


class _RichProgress:
    def __init__(self, console: Console) -> None:
        self.console = console
        self.enabled = console.is_terminal
        self.lock = threading.Lock()
        self.progress: Progress | None = None
        self.task_id = None

    def handle(self, event: dict[str, object]) -> None:
        if not self.enabled:
            return
        event_type = event.get("event")
        with self.lock:
            if event_type == "images_start":
                total = event.get("total")
                if not isinstance(total, int) or total <= 0:
                    return
                self.progress = Progress(
                    TextColumn("{task.description}", justify="left"),
                    BarColumn(bar_width=None),
                    TaskProgressColumn(),
                    TimeElapsedColumn(),
                    console=self.console,
                    transient=True,
                )
                self.progress.start()
                self.task_id = self.progress.add_task("Images", total=total)
            elif event_type == "image_done" and self.progress is not None:
                self.progress.advance(self.task_id, 1)

    def close(self) -> None:
        with self.lock:
            if self.progress is not None:
                self.progress.stop()
                self.progress = None


def _resolve_metadata(args: argparse.Namespace) -> BookMetadata:
    book = BookMetadata()
    if args.metadata:
        try:
            book = load_book_metadata(Path(args.metadata))
        except ValueError as exc:
            raise SystemExit(str(exc)) from exc
    if args.title:
        book.title = args.title
    if args.author:
        book.creator = args.author
    if args.modified:
        book.modified = args.modified
    return book


def _report(console: Console, result: ConversionResult, output_path: Path) -> None:
    console.print(
        f"Wrote {output_path} ({len(result.chapters)} chapters, {len(result.images)} images)"
    )
    if result.failed_images:
        console.print(f"[yellow]{len(result.failed_images)} image(s) kept their remote URL:[/yellow]")
        for url in sorted(result.failed_images):
            console.print(f"  {url}", markup=False, highlight=False)


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]
    parser = build_parser()
    if not argv:
        parser.print_help()
        return 0
    args = parser.parse_args(argv)

    input_path = Path(args.input_path)
    if not input_path.exists():
        raise SystemExit(f"Input path not found: {input_path}")
    cover_path = Path(args.cover) if args.cover else None
    if cover_path is not None and not cover_path.exists():
        raise SystemExit(f"Cover image not found: {cover_path}")
    if args.jobs < 1:
        raise SystemExit("--jobs must be at least 1.")
    output_path = Path(args.output) if args.output else input_path.with_suffix(".epub")

    set_debug_logging(args.debug)
    book = _resolve_metadata(args)
    config = ConversionConfig(
        image_dir=Path(args.images_dir) if args.images_dir else None,
        max_workers=args.jobs,
        timeout=args.timeout,
    )

    console = Console(stderr=True)
    progress_handler = _RichProgress(console)
    try:
        result = convert_file(
            input_path,
            output_path,
            cover_path=cover_path,
            metadata=book,
            config=config,
            progress=progress_handler.handle,
        )
    finally:
        progress_handler.close()

    if result.is_empty:
        console.print(f"[red]No chapters found in {input_path}; wrote an empty book.[/red]")
        return 1
    _report(console, result, output_path)
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
