"""Command-line interface for unmark."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from unmark.config import DEFAULT_CONFIG_PATH, get_section, load_config
from unmark.core import (
    BatchItem,
    BatchResult,
    BatchWatermarkProcessor,
    Notice,
    OutputFormat,
    OutputSpec,
    Progress,
    SetupError,
    SourceFile,
    ValidationError,
)
from unmark.core.logger import setup_logging
from unmark.core.utils import is_supported_mime

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ITEM_FAILURES = 1
EXIT_REJECTED = 2


def _quality(value: str) -> float:
    try:
        quality = float(value)
    except ValueError as exc:  # pragma: no cover - argparse failure path
        raise argparse.ArgumentTypeError(f"Expected a number, received '{value}'") from exc
    if not 0.0 <= quality <= 1.0:
        raise argparse.ArgumentTypeError("Quality must be between 0 and 1.")
    return quality


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="unmark",
        description="Remove the semi-transparent logo watermark from images, locally.",
    )
    parser.add_argument(
        "--config",
        default=None,
        help=f"Path to configuration YAML (default: {DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument("--log-level", help="Override logging level (e.g. INFO, DEBUG).")
    parser.add_argument("--log-file", help="Override log file path.")
    parser.add_argument("--assets", help="Directory containing bg_48.png and bg_96.png.")

    subparsers = parser.add_subparsers(dest="command", required=True)

    process_parser = subparsers.add_parser("process", help="Process a batch of up to ten images.")
    process_parser.add_argument("-i", "--input", nargs="+", required=True, help="Input image paths.")
    process_parser.add_argument("-o", "--output", required=True, help="Directory for the results.")
    formats = [fmt.value for fmt in OutputFormat]
    process_parser.add_argument(
        "-f", "--format", choices=formats, help="Output format (default: match the first input)."
    )
    process_parser.add_argument("-q", "--quality", type=_quality, help="Output quality between 0 and 1.")
    process_parser.add_argument("--zip", action="store_true", help="Also write a ZIP of all results.")
    process_parser.add_argument(
        "--reprocess-format",
        choices=formats,
        help="Re-run the batch in this format after the first pass.",
    )
    process_parser.add_argument(
        "--reprocess-quality",
        type=_quality,
        help="Re-run the batch at this quality after the first pass.",
    )
    return parser


def _apply_overrides(overrides: Dict[str, Any], args: argparse.Namespace) -> None:
    if args.log_level:
        overrides.setdefault("logging", {})["level"] = args.log_level.upper()
    if args.log_file:
        file_overrides = overrides.setdefault("logging", {}).setdefault("file", {})
        file_overrides["enabled"] = True
        file_overrides["filename"] = args.log_file
    if args.assets:
        overrides.setdefault("assets", {})["directory"] = str(Path(args.assets).resolve())
    if getattr(args, "format", None):
        overrides.setdefault("output", {})["format"] = args.format
    if getattr(args, "quality", None) is not None:
        overrides.setdefault("output", {})["quality"] = args.quality


def _log_item(item: BatchItem) -> None:
    logger.debug("%s: %s", item.name, item.label)


def _log_progress(progress: Progress) -> None:
    logger.info(progress.text)


def _log_notice(notice: Notice) -> None:
    level = logging.WARNING if notice.kind == "encode-degradation" else logging.ERROR
    logger.log(level, notice.message)


def _write_results(processor: BatchWatermarkProcessor, output_dir: Path) -> List[Path]:
    output_dir.mkdir(parents=True, exist_ok=True)
    written: List[Path] = []
    for item in processor.items:
        if item.result is None:
            continue
        path = output_dir / item.result.filename
        path.write_bytes(processor.store.open(item.result.ref))
        logger.info("%s -> %s | %s", item.name, path, processor.size_summary(item))
        written.append(path)
    return written


async def _drive(
    processor: BatchWatermarkProcessor,
    files: List[SourceFile],
    spec: OutputSpec,
    respec: Optional[OutputSpec],
) -> BatchResult:
    result = await processor.start(files, spec)
    if respec is not None:
        result = await processor.reprocess(respec) or result
    return result


def _run_process(args: argparse.Namespace, config: Dict[str, Any]) -> int:
    try:
        files = [SourceFile.from_path(path) for path in args.input]
    except OSError as exc:
        logger.error("Cannot read input: %s", exc)
        return EXIT_REJECTED
    first_mime = next((f.mime_type for f in files if is_supported_mime(f.mime_type)), None)
    spec = OutputSpec.from_config({"output": get_section(config, "output", {})}, mime_type=first_mime)

    respec = None
    if args.reprocess_format or args.reprocess_quality is not None:
        respec = OutputSpec(
            args.reprocess_format or spec.format,
            spec.quality if args.reprocess_quality is None else args.reprocess_quality,
        )

    output_dir = Path(args.output)
    with BatchWatermarkProcessor(
        config=config,
        on_item=_log_item,
        on_progress=_log_progress,
        on_notice=_log_notice,
    ) as processor:
        try:
            result = asyncio.run(_drive(processor, files, spec, respec))
        except (ValidationError, SetupError) as exc:
            logger.error("Batch rejected: %s", exc)
            return EXIT_REJECTED

        _write_results(processor, output_dir)
        if args.zip:
            archive = processor.build_archive()
            if archive is None:
                logger.warning("No completed images to archive.")
            else:
                archive_path = output_dir / archive.filename
                archive_path.write_bytes(archive.data)
                logger.info("Wrote %s with %s image(s)", archive_path, len(archive.entries))

    logger.info("Batch complete. Successes: %s | Failures: %s", result.completed, result.failed)
    return EXIT_OK if result.failed == 0 else EXIT_ITEM_FAILURES


def main(argv: Optional[List[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    overrides: Dict[str, Any] = {}
    _apply_overrides(overrides, args)

    config = load_config(args.config, overrides=overrides or None)
    setup_logging(config.get("logging", {}), force=True)

    try:
        if args.command == "process":
            return _run_process(args, config)
        parser.error(f"Unknown command: {args.command}")  # pragma: no cover
    except Exception as exc:  # pragma: no cover - command failure path
        logger.exception("Command failed: %s", exc)
        return 1
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    sys.exit(main())
