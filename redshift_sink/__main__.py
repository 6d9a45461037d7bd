"""CLI entry point for one-off deliveries.

Usage:
    python -m redshift_sink deliver --config sink.yaml --input access_log.jsonl
    python -m redshift_sink deliver --config sink.yaml --input app.tsv --tag app_log
    python -m redshift_sink deliver --config sink.yaml --input access_log.jsonl --dry-run

The input holds one record per line: a JSON object for json/msgpack
file types, or the pre-formatted line itself for every other file type.

Exit codes:
    0 - chunk loaded (or discarded because COPY rejected its data)
    1 - configuration error or fatal delivery failure
    2 - nothing to load
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

from redshift_sink.chunk import Chunk
from redshift_sink.config import SinkConfig, load_config
from redshift_sink.errors import SinkError
from redshift_sink.observability import setup_logging
from redshift_sink.sink import DeliveryResult, RedshiftSink, table_name_from_chunk_key
from redshift_sink.warehouse.loader import CopyCommand

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_NO_DATA = 2


def build_chunk(sink: RedshiftSink, input_path: Path, tag: str) -> Chunk:
    """Format every line of ``input_path`` into a chunk keyed by ``tag``."""
    chunk = Chunk(tag)
    field = sink.config.record_log_tag
    structured = sink.record_format.is_structured
    now = time.time()

    with open(input_path, "r", encoding="utf-8") as f:
        for lineno, line in enumerate(f, start=1):
            line = line.rstrip("\n")
            if structured:
                if not line.strip():
                    continue
                try:
                    record = json.loads(line)
                except ValueError as e:
                    logger.warning("Skipping line %d: invalid JSON (%s)", lineno, e)
                    continue
                if not isinstance(record, dict):
                    logger.warning("Skipping line %d: not a JSON object", lineno)
                    continue
            else:
                record = {field: line}
            chunk.append(sink.format(tag, now, record))

    logger.debug("Built %r from %s", chunk, input_path)
    return chunk


def describe_target(config: SinkConfig, tag: str) -> Dict[str, Any]:
    """Where a delivery of ``tag`` would go, without touching AWS."""
    table = table_name_from_chunk_key(tag) if config.tag_table else config.redshift_tablename
    command = CopyCommand(
        schema_name=config.redshift_schemaname,
        table_name=table,
        s3_uri=f"s3://{config.s3_bucket}/{config.path}<key>.gz",
        aws_key_id=config.aws_key_id,
        aws_sec_key=config.aws_sec_key,
        delimiter=config.delimiter,
        copy_base_options=config.redshift_copy_base_options,
    )
    return {
        "table": f"{config.redshift_schemaname}.{table}",
        "s3_prefix": f"s3://{config.s3_bucket}/{config.path}",
        "file_type": config.file_type,
        "record_format": config.record_format.value,
        "make_auto_table": config.make_auto_table,
        "copy": command.masked_sql,
    }


def print_result(result: DeliveryResult) -> None:
    """Print delivery result in a readable format."""
    print()
    print("=" * 60)
    print(f"Table: {result.table_name}")
    print("=" * 60)
    print(f"Status: {result.status.value.upper()}")
    if result.s3_uri:
        print(f"  Object: {result.s3_uri}")
    print(f"  Records: {result.records}")
    print(f"  Lines written: {result.lines_written}")


def deliver_command(args: argparse.Namespace) -> int:
    config = load_config(args.config, env_file=args.env_file)

    input_path = Path(args.input)
    if not input_path.exists():
        print(f"Error: input file not found: {input_path}")
        return EXIT_FAILED
    tag = args.tag or input_path.name

    if args.dry_run:
        target = describe_target(config, tag)
        print("DRY RUN - No data was written")
        for key, value in target.items():
            print(f"  {key}: {value}")
        return EXIT_OK

    sink = RedshiftSink(config)
    chunk = build_chunk(sink, input_path, tag)
    if chunk.empty:
        print("No records found in input")
        return EXIT_NO_DATA

    result = sink.write(chunk)
    print_result(result)
    return EXIT_OK if result else EXIT_NO_DATA


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="redshift-sink",
        description="Deliver log records to Amazon Redshift through S3",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Load a file of JSON records into the table named after the file
    python -m redshift_sink deliver --config sink.yaml --input access_log.jsonl

    # Route to a specific table via the tag
    python -m redshift_sink deliver --config sink.yaml --input out.jsonl --tag nginx.access

    # Show the resolved target without executing
    python -m redshift_sink deliver --config sink.yaml --input out.jsonl --dry-run
        """,
    )
    subparsers = parser.add_subparsers(dest="command")

    deliver = subparsers.add_parser("deliver", help="Deliver one file as one chunk")
    deliver.add_argument(
        "--config",
        required=True,
        help="Path to the sink YAML configuration",
    )
    deliver.add_argument(
        "--input",
        required=True,
        help="File with one record per line",
    )
    deliver.add_argument(
        "--tag",
        help="Chunk key used for table routing (default: input file name)",
    )
    deliver.add_argument(
        "--env-file",
        help="Load environment variables from this .env file first",
    )
    deliver.add_argument(
        "--dry-run",
        action="store_true",
        help="Validate configuration and print the target without executing",
    )
    deliver.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    deliver.add_argument(
        "--json-logs",
        action="store_true",
        help="Output logs in JSON format (for log aggregation systems)",
    )
    deliver.add_argument(
        "--log-file",
        help="Write logs to a file in addition to console",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command != "deliver":
        parser.print_help()
        return EXIT_FAILED

    setup_logging(
        verbose=args.verbose,
        json_format=args.json_logs,
        log_file=args.log_file,
    )

    try:
        return deliver_command(args)
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        return 130
    except SinkError as e:
        logger.error("Delivery failed: %s", e.message, extra={"error": e.to_dict()})
        print(f"\nError: {e}")
        return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
