from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from datetime import tzinfo
from pathlib import Path
from typing import Callable, Sequence

from dotenv import load_dotenv

from smartbin.api.config_loader import load_config
from smartbin.api.main import build_classification_service
from smartbin.device.capture import CameraImageSource, FileImageSource, ImageSource
from smartbin.device.workflow import (
    STATUS_CANCELLED,
    STATUS_DENIED,
    ScanOutcome,
    ScanWorkflow,
)
from smartbin.errors import StorageError
from smartbin.history.store import ResultStore, ScanRecord, format_local_timestamp


def parse_camera_source(value: str) -> int | str:
    value = value.strip()
    try:
        return int(value)
    except ValueError:
        return value


def describe_outcome(outcome: ScanOutcome) -> str:
    if outcome.ok and outcome.result is not None:
        result = outcome.result
        return (
            f"[device] Detected {result.category} "
            f"({result.confidence * 100:.1f}% confidence, {result.source})"
        )
    if outcome.ok and outcome.record is not None:
        return f"[device] {outcome.record.category} waste recorded!"
    if outcome.status == STATUS_CANCELLED:
        return "[device] Scan cancelled"
    if outcome.status == STATUS_DENIED:
        return f"[device] Permission required: {outcome.error}"
    return f"[device] {outcome.step or 'scan'} failed: {outcome.error}"


def format_history(records: Sequence[ScanRecord], tz: tzinfo | None = None) -> list[str]:
    if not records:
        return ["[device] No scan history"]
    return [
        f"{format_local_timestamp(record.created_at, tz)}  {record.category:<8} #{record.id}"
        for record in records
    ]


def run_scan(
    workflow: ScanWorkflow,
    source: ImageSource,
    out: Callable[[str], None] = print,
) -> int:
    outcome = asyncio.run(workflow.start(source))
    out(describe_outcome(outcome))
    workflow.acknowledge()
    return 0 if outcome.ok or outcome.status == STATUS_CANCELLED else 1


def run_record(
    workflow: ScanWorkflow,
    category: str,
    out: Callable[[str], None] = print,
) -> int:
    outcome = asyncio.run(workflow.record_manual(category))
    out(describe_outcome(outcome))
    return 0 if outcome.ok else 1


def run_history(
    store: ResultStore,
    query: str | None,
    out: Callable[[str], None] = print,
) -> int:
    try:
        records = store.list(query)
    except StorageError as exc:
        out(f"[device] history failed: {exc}")
        return 1
    for line in format_history(records):
        out(line)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Smart Bin scan client")
    parser.add_argument(
        "--config",
        type=str,
        default="config/smartbin.json",
        help="Path to JSON configuration file",
    )
    parser.add_argument("--db", type=str, default=None, help="SQLite database path override")
    parser.add_argument("--api-url", type=str, default=None, help="Classifier base URL override")
    parser.add_argument(
        "--fallback-delay",
        type=float,
        default=None,
        help="Seconds the mock classifier waits before answering",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    commands = parser.add_subparsers(dest="command", required=True)

    scan = commands.add_parser("scan", help="Classify an image and record the result")
    source = scan.add_mutually_exclusive_group(required=True)
    source.add_argument("--image", type=Path, help="Path to an existing photo")
    source.add_argument("--camera", action="store_true", help="Capture a frame from a camera")
    scan.add_argument(
        "--camera-source",
        type=parse_camera_source,
        default=0,
        help="Camera index or stream URL (default: 0)",
    )
    scan.add_argument(
        "--capture-dir",
        type=Path,
        default=Path("data/captures"),
        help="Directory for captured frames",
    )

    record = commands.add_parser("record", help="Record a category without classification")
    record.add_argument("category", help="Paper, Plastic or Organic")

    history = commands.add_parser("history", help="Show recorded scans, newest first")
    history.add_argument("--filter", dest="query", default=None, help="Category substring")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s [%(name)s] %(message)s",
    )

    try:
        cfg = load_config(args.config if Path(args.config).exists() else None)
    except (OSError, ValueError) as exc:
        print(f"[device] Failed to load configuration: {exc}")
        return 1
    if args.db:
        cfg.storage.database_path = args.db
    if args.api_url is not None:
        cfg.classifier.base_url = args.api_url
    if args.fallback_delay is not None:
        cfg.classifier.fallback_delay_seconds = max(0.0, args.fallback_delay)

    store = ResultStore(cfg.storage.database_path)
    try:
        store.initialize()
    except StorageError as exc:
        print(f"[device] Scan history unavailable: {exc}")
        return 1

    try:
        if args.command == "history":
            return run_history(store, args.query)
        workflow = ScanWorkflow(classifier=build_classification_service(cfg), store=store)
        if args.command == "record":
            return run_record(workflow, args.category)
        if args.camera:
            image_source: ImageSource = CameraImageSource(
                output_dir=args.capture_dir, source=args.camera_source
            )
        else:
            image_source = FileImageSource(args.image)
        return run_scan(workflow, image_source)
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
