from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

import cv2
import typer
from rich import print as rprint
from rich.logging import RichHandler

from .config_io import load_scan_defaults
from .models import ScanSuccess
from .preview_core import FrameAnalyzer, StabilityTracker
from .scan_core import load_key_txt, needs_review, scan_sheet, scan_to_csv, score_against_key
from .scan_defaults import ScanDefaults
from .tools.image_io import is_video, iter_video_frames, load_image_any

app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help="sheet-scan: read multiple-choice answer sheets from photos.",
)


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=verbose)],
        force=True,
    )


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log pipeline decisions (DEBUG)"),
):
    _setup_logging(verbose)


def _settings(config: Optional[str]) -> ScanDefaults:
    try:
        return load_scan_defaults(config)
    except (OSError, ValueError) as e:
        rprint(f"[red]Failed to load config {config}:[/red] {e}")
        raise typer.Exit(code=2)


# ------------------------------ SCAN ---------------------------------
@app.command()
def scan(
    image: str = typer.Argument(..., help="Photo or scan of one answer sheet"),
    questions: int = typer.Option(20, "--questions", "-q", help="Total questions: 20|50|100"),
    options: int = typer.Option(5, "--options", help="Options per question"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Threshold overrides (.yaml/.yml or .json)"),
    out_json: Optional[str] = typer.Option(None, "--out-json", "-o", help="Write the scan result as JSON"),
    save_corrected: Optional[str] = typer.Option(None, "--save-corrected", help="Write the perspective-corrected image"),
    key_txt: Optional[str] = typer.Option(None, "--key-txt", "-k", help="Answer key file (A/B/C/... in order)"),
):
    """
    Scan a single answer sheet and print answers, issues and confidence.
    """
    settings = _settings(config)
    try:
        pixels = load_image_any(image)
    except FileNotFoundError as e:
        rprint(f"[red]{e}[/red]")
        raise typer.Exit(code=2)

    key = None
    if key_txt:
        try:
            key = load_key_txt(key_txt)
        except OSError as e:
            rprint(f"[red]Failed to read key {key_txt}:[/red] {e}")
            raise typer.Exit(code=2)

    result = scan_sheet(pixels, questions, options, settings)
    payload = result.to_dict()

    if isinstance(result, ScanSuccess) and key:
        got, tot = score_against_key(result.answers, key)
        payload["score"] = got
        payload["total"] = tot

    if out_json:
        Path(out_json).write_text(json.dumps(payload, indent=2), encoding="utf-8")

    if not isinstance(result, ScanSuccess):
        rprint(f"[red]Scan failed:[/red] {result.message}")
        raise typer.Exit(code=2)

    for i, answer in enumerate(result.answers, start=1):
        rprint(f"Q{i:>3}: {answer or '[dim]-[/dim]'}")
    for issue in result.issues:
        rprint(f"[yellow]Q{issue.question_number} {issue.type.value}:[/yellow] {issue.message}")
    color = "yellow" if needs_review(result, settings) else "green"
    rprint(f"[{color}]Confidence:[/{color}] {result.confidence:.1%}")
    if "score" in payload:
        rprint(f"[green]Score:[/green] {payload['score']}/{payload['total']}")

    if save_corrected and result.corrected_image is not None:
        cv2.imwrite(save_corrected, result.corrected_image)
        rprint(f"[green]Wrote:[/green] {save_corrected}")
    if out_json:
        rprint(f"[green]Wrote:[/green] {out_json}")


#----------------------------- GRADE ---------------------------------
@app.command()
def grade(
    inputs: List[str] = typer.Argument(..., help="Sheet images and/or PDFs (one sheet per page)"),
    questions: int = typer.Option(20, "--questions", "-q", help="Total questions: 20|50|100"),
    options: int = typer.Option(5, "--options", help="Options per question"),
    key_txt: Optional[str] = typer.Option(None, "--key-txt", "-k",
        help="Answer key file (A/B/C/... one per line). Adds score/total columns."),
    out_csv: str = typer.Option("results.csv", "--out-csv", "-o", help="Output CSV of per-sheet results"),
    corrected_dir: Optional[str] = typer.Option(None, "--corrected-dir", help="Directory for corrected sheet images"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Threshold overrides (.yaml/.yml or .json)"),
    dpi: int = typer.Option(300, "--dpi", help="Render DPI for PDF inputs"),
):
    """
    Scan a batch of sheets into a CSV (one row per sheet).
    """
    settings = _settings(config)
    try:
        scan_to_csv(
            inputs=inputs,
            out_csv=out_csv,
            total_questions=questions,
            options_per_question=options,
            key_txt=key_txt,
            d=settings,
            corrected_dir=corrected_dir,
            dpi=dpi,
        )
    except Exception as e:
        rprint(f"[red]Grading failed:[/red] {e}")
        raise typer.Exit(code=2)

    rprint(f"[green]Wrote results:[/green] {out_csv}")


# ------------------------------ PREVIEW --------------------------------
@app.command()
def preview(
    inputs: List[str] = typer.Argument(..., help="Frames (images) or a video clip"),
    required_frames: Optional[int] = typer.Option(None, "--required-frames", help="Consecutive valid frames before auto-capture"),
    step: int = typer.Option(1, "--step", help="Analyze every Nth video frame"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Threshold overrides (.yaml/.yml or .json)"),
):
    """
    Run live-preview corner detection over frames and report when the sheet
    would be auto-captured.
    """
    settings = _settings(config)
    analyzer = FrameAnalyzer(settings)
    tracker = StabilityTracker(required_frames or settings.stability_frames)

    def frames():
        for path in inputs:
            if is_video(path):
                for idx, frame in iter_video_frames(path, step=step):
                    yield f"{Path(path).name}#{idx}", frame
            else:
                yield Path(path).name, load_image_any(path)

    try:
        for label, frame in frames():
            result = analyzer.submit(frame)
            ready = tracker.update(result)
            if result is None:
                continue
            mark = "[green]valid[/green]" if result.is_valid else "[red]invalid[/red]"
            rprint(f"{label}: {mark} {result.message} ({tracker.count}/{tracker.required_frames})")
            if ready:
                rprint(f"[green]Auto-capture at:[/green] {label}")
                return
    except FileNotFoundError as e:
        rprint(f"[red]{e}[/red]")
        raise typer.Exit(code=2)

    rprint("[yellow]Sheet never stable long enough for auto-capture.[/yellow]")
    raise typer.Exit(code=1)


# ------------------------------- MAIN --------------------------------
def app_main() -> None:
    """Entry point for console_scripts."""
    try:
        app()
    except KeyboardInterrupt:
        rprint("\n[red]Interrupted[/red]")
        sys.exit(130)


if __name__ == "__main__":
    app_main()
