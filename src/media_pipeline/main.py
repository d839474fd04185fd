"""Main module for the media pipeline CLI."""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .core.collaborators import LoggingEventNotifier
from .core.config import ArchiveOptions, get_settings
from .core.factories import ProcessingPipelineFactory
from .core.logging_config import get_logger, set_log_level
from .core.mime import detect_mime_type
from .core.models import BatchResult, ExtractedFile, FileInfo, FileInput

VERSION = "0.1.0"


def read_inputs(paths: List[str]) -> List[FileInput]:
    """Load files from disk and sniff their MIME types."""
    inputs = []
    for raw_path in paths:
        path = Path(raw_path)
        data = path.read_bytes()
        inputs.append(
            FileInput(
                data=data,
                info=FileInfo(
                    file_name=path.name,
                    mime_type=detect_mime_type(path.name, data),
                    size=len(data),
                ),
            )
        )
    return inputs


def print_batch_summary(result: BatchResult) -> None:
    print(f"Batch {result.batch_id}: {result.success_count}/{result.total_files} succeeded "
          f"in {result.processing_time_ms:.1f}ms")
    for item in result.results:
        print(f"  OK    {item.file_name} [{item.processor_type.value}] "
              f"{len(item.artifacts)} artifact(s), {item.attempts} attempt(s)")
    for error in result.errors:
        print(f"  FAIL  {error.file_name}: {error.error_type}: {error.error}")


def run_process(args: argparse.Namespace) -> int:
    """Process local files and optionally persist them to local storage."""
    logger = get_logger("cli")
    settings = get_settings()
    updates = {}
    if args.sequential:
        updates["enable_parallel_processing"] = False
    if args.max_concurrent:
        updates["max_concurrent_processes"] = args.max_concurrent
    if args.store_path:
        updates["storage_provider"] = "local"
        updates["local_storage_path"] = args.store_path
        updates["health_check_interval"] = 0
    if updates:
        settings = settings.model_copy(update=updates)

    inputs = read_inputs(args.files)
    notifier = LoggingEventNotifier()
    logger.info(f"Processing {len(inputs)} file(s)")

    if not args.store_path:
        orchestrator = ProcessingPipelineFactory.create_orchestrator(settings, notifier=notifier)
        try:
            result = orchestrator.process_batch(inputs)
        finally:
            orchestrator.shutdown()
        print_batch_summary(result)
        return 0 if result.error_count == 0 else 1

    service = ProcessingPipelineFactory.create_ingestion_service(settings, notifier=notifier)
    failures = 0
    try:
        for item in inputs:
            try:
                ingested = service.ingest(item.data, item.info)
            except Exception as e:
                failures += 1
                logger.error(f"Failed to ingest {item.info.file_name}: {e}")
                print(f"  FAIL  {item.info.file_name}: {e}")
                continue
            if ingested.duplicate:
                print(f"  SKIP  {item.info.file_name} (duplicate content)")
                continue
            print(f"  OK    {item.info.file_name} -> {ingested.original.key} "
                  f"(+{len(ingested.derived)} derived)")
    finally:
        service.orchestrator.shutdown()
        service.storage_manager.shutdown()
    return 0 if failures == 0 else 1


def run_archive(args: argparse.Namespace) -> int:
    """Bundle local files into a new archive."""
    files = [
        ExtractedFile(path=Path(raw_path).name, data=Path(raw_path).read_bytes())
        for raw_path in args.files
    ]
    orchestrator = ProcessingPipelineFactory.create_orchestrator(get_settings())
    try:
        result = orchestrator.create_archive(files, args.type)
    finally:
        orchestrator.shutdown()
    Path(args.output).write_bytes(result.data)
    print(f"Created {args.output}: {result.files_count} file(s), {result.size} bytes "
          f"(ratio {result.compression_ratio:.2f})")
    return 0


def run_extract(args: argparse.Namespace) -> int:
    """Safely extract an archive into a directory."""
    from .processors.archive import ArchiveProcessor

    archive_path = Path(args.archive)
    data = archive_path.read_bytes()
    processor = ArchiveProcessor(ArchiveOptions())
    entries = processor.extract_to(
        data,
        Path(args.destination),
        file_name=archive_path.name,
        mime_type=detect_mime_type(archive_path.name, data),
    )
    extracted = [entry for entry in entries if entry.extracted]
    print(f"Extracted {len(extracted)} of {len(entries)} entries to {args.destination}")
    for entry in entries:
        if entry.skipped_reason:
            print(f"  skipped {entry.path}: {entry.skipped_reason}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        prog="media-pipeline",
        description="Media Pipeline - process, archive and store media files",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Process files in parallel and print a summary
  media-pipeline process photo.jpg talk.mp4 report.pdf

  # Process and persist originals plus derived artifacts
  media-pipeline process photo.jpg --store-path ./storage

  # Bundle files into an archive, then extract it safely
  media-pipeline archive bundle.zip a.txt b.png
  media-pipeline extract bundle.zip ./out

  # Show version
  media-pipeline version
        """,
    )

    subparsers: argparse._SubParsersAction = parser.add_subparsers(
        dest="command", help="Available commands"
    )

    process_parser = subparsers.add_parser("process", help="Process local media files")
    process_parser.add_argument("files", nargs="+", help="Files to process")
    process_parser.add_argument(
        "--store-path", default=None, help="Persist originals and artifacts under this directory"
    )
    process_parser.add_argument(
        "--sequential", action="store_true", help="Process files one at a time"
    )
    process_parser.add_argument(
        "--max-concurrent", type=int, default=None, help="Maximum files processed at once"
    )
    process_parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    archive_parser = subparsers.add_parser("archive", help="Create an archive from files")
    archive_parser.add_argument("output", help="Archive file to write")
    archive_parser.add_argument("files", nargs="+", help="Files to include")
    archive_parser.add_argument(
        "--type", default="zip", choices=["zip", "tar", "tar.gz"], help="Archive format (default: zip)"
    )

    extract_parser = subparsers.add_parser("extract", help="Safely extract an archive")
    extract_parser.add_argument("archive", help="Archive file to extract")
    extract_parser.add_argument("destination", help="Directory to extract into")

    subparsers.add_parser("version", help="Show version information")
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """
    Entry point for the media pipeline command-line interface.

    Dispatches to ``process``, ``archive``, ``extract`` or ``version``. Any
    failure inside a command is logged and turned into exit status 1.
    """
    parser = build_parser()
    args: argparse.Namespace = parser.parse_args(argv)

    handlers = {
        "process": run_process,
        "archive": run_archive,
        "extract": run_extract,
    }

    if args.command in handlers:
        logger = get_logger("cli")
        if getattr(args, "debug", False):
            set_log_level(logging.DEBUG)
        try:
            status = handlers[args.command](args)
        except KeyboardInterrupt:
            logger.warning("Interrupted by user.")
            status = 130
        except Exception as e:
            logger.error(f"{args.command} failed: {e}", exc_info=True)
            status = 1
        if status:
            sys.exit(status)

    elif args.command == "version":
        print("Media Pipeline CLI")
        print(f"Version {VERSION}")
        print("Media ingestion, processing and fault-tolerant storage")
        sys.exit(0)

    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
