"""Main module for the item images CLI."""

import argparse
import json
import logging
import mimetypes
import sys
from pathlib import Path
from typing import List, Optional

from . import __version__
from .core.exceptions import ItemImagesError
from .core.factories import PipelineFactory
from .core.logging_config import get_logger
from .core.models import (
    ArtifactSummary,
    ImageArtifacts,
    PipelineConfig,
    PreparedImage,
    SourceImage,
)
from .core.observability import MetricsCollector, StructuredLogger, timed_operation
from .core.workflow import ItemImagePipeline

cli_logger = StructuredLogger("cli")
cli_metrics = MetricsCollector()


def build_parser() -> argparse.ArgumentParser:
    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        prog="item-images",
        description="Item Images - validate, convert, compress and thumbnail item photos",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Compress a photo and write the artifacts next to each other
  item-images process photo.heic --user-id u1 --output-dir out/

  # Compress and upload to the configured bucket
  item-images process photo.jpg --user-id u1 --upload --bucket items

  # Show version
  item-images version
        """,
    )

    subparsers: argparse._SubParsersAction = parser.add_subparsers(
        dest="command", help="Available commands"
    )

    process_parser: argparse.ArgumentParser = subparsers.add_parser(
        "process", help="Process one image into a main artifact and a thumbnail"
    )
    process_parser.add_argument("path", help="Source image file")
    process_parser.add_argument(
        "--user-id", required=True, help="Storage namespace for uploaded artifacts"
    )
    process_parser.add_argument(
        "--content-type",
        default=None,
        help="Declared content type (guessed from the file name when omitted)",
    )
    process_parser.add_argument(
        "--output-dir",
        default=None,
        help="Write {stem}.jpg and {stem}_thumb.jpg here (default: current directory)",
    )
    process_parser.add_argument(
        "--upload", action="store_true", help="Upload the artifacts and report their public locators"
    )
    process_parser.add_argument(
        "--bucket", default=None, help="Destination bucket (overrides ITEM_IMAGES_BUCKET)"
    )
    process_parser.add_argument(
        "--debug", action="store_true", help="Enable debug logging"
    )

    subparsers.add_parser("version", help="Show version information")
    return parser


def load_source(path: Path, content_type: Optional[str] = None) -> SourceImage:
    """Read a source file, guessing its content type from the name if needed."""
    if content_type is None:
        content_type, _ = mimetypes.guess_type(path.name)
    return SourceImage(
        data=path.read_bytes(),
        content_type=content_type or "",
        file_name=path.name,
    )


def write_artifacts(prepared: PreparedImage, output_dir: Path, stem: str) -> ImageArtifacts:
    output_dir.mkdir(parents=True, exist_ok=True)
    main_path = output_dir / f"{stem}.jpg"
    thumb_path = output_dir / f"{stem}_thumb.jpg"
    main_path.write_bytes(prepared.main.data)
    thumb_path.write_bytes(prepared.thumbnail.data)
    return ImageArtifacts(
        processed=ArtifactSummary(
            uri=str(main_path),
            width=prepared.main.width,
            height=prepared.main.height,
            size_bytes=prepared.main.size_bytes,
        ),
        thumbnail=ArtifactSummary(
            uri=str(thumb_path),
            width=prepared.thumbnail.width,
            height=prepared.thumbnail.height,
            size_bytes=prepared.thumbnail.size_bytes,
        ),
    )


@timed_operation("process_file", logger=cli_logger, metrics_collector=cli_metrics)
def process_file(
    pipeline: ItemImagePipeline,
    source: SourceImage,
    user_id: str,
    output_dir: Optional[Path] = None,
    upload: bool = False,
) -> ImageArtifacts:
    """
    Run one source through the pipeline and describe the resulting artifacts.

    With ``upload`` the artifacts go to storage and ``uri`` is the public
    locator. Without it, or when ``output_dir`` is given, they are also
    written to ``output_dir`` and ``uri`` is the local file path unless an
    upload replaced it.
    """
    prepared = pipeline.prepare(source)
    artifacts: Optional[ImageArtifacts] = None
    if output_dir is not None or not upload:
        stem = Path(source.file_name).stem or "image"
        artifacts = write_artifacts(prepared, output_dir or Path("."), stem)
    if not upload:
        return artifacts

    result = pipeline.upload(prepared, user_id)
    return ImageArtifacts(
        processed=ArtifactSummary(
            uri=result.image.url,
            width=prepared.main.width,
            height=prepared.main.height,
            size_bytes=prepared.main.size_bytes,
        ),
        thumbnail=ArtifactSummary(
            uri=result.thumbnail.url,
            width=prepared.thumbnail.width,
            height=prepared.thumbnail.height,
            size_bytes=prepared.thumbnail.size_bytes,
        ),
    )


def log_stage_summary(logger: logging.Logger, metrics: Optional[MetricsCollector]) -> None:
    """Log timing statistics for each recorded stage."""
    if metrics is None:
        return
    stages = dict.fromkeys(m.operation for m in metrics.get_metrics())
    for stage in stages:
        summary = metrics.get_summary(stage)
        logger.debug(
            f"{stage}: {summary['total_operations']} run(s), "
            f"{summary['total_duration'] * 1000:.1f} ms total, "
            f"{summary['failed_operations']} failed"
        )


def run_process(args: argparse.Namespace) -> int:
    logger = get_logger("cli")
    if args.debug:
        logger.setLevel(logging.DEBUG)

    path = Path(args.path)
    if not path.is_file():
        print(f"Error: {path} is not a file", file=sys.stderr)
        return 1

    try:
        config = PipelineConfig.from_env(bucket=args.bucket, debug=args.debug)
        pipeline = PipelineFactory.create_pipeline(config=config)
        source = load_source(path, args.content_type)
        output_dir = Path(args.output_dir) if args.output_dir else None
        artifacts = process_file(pipeline, source, args.user_id, output_dir, args.upload)
    except ItemImagesError as exc:
        logger.error(f"Processing failed: {exc}")
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        logger.warning("Processing interrupted by user.")
        return 1

    if args.debug:
        log_stage_summary(logger, pipeline.metrics)
        log_stage_summary(logger, cli_metrics)
    print(json.dumps(artifacts.model_dump(by_alias=True), indent=2))
    return 0


def main(argv: Optional[List[str]] = None) -> None:
    """
    Entry point for the command-line interface of Item Images.

    Dispatches the ``process`` and ``version`` commands and exits with the
    command's status code.
    """
    parser = build_parser()
    args: argparse.Namespace = parser.parse_args(argv)

    if args.command == "process":
        sys.exit(run_process(args))

    elif args.command == "version":
        print("Item Images CLI")
        print(f"Version {__version__}")
        print("Validate, convert, compress and thumbnail item photos")
        sys.exit(0)

    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
