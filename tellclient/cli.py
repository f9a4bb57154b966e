#!/usr/bin/env python3
"""
tell-client Command Line Entry Point

Run single operations against a TellStore server, or drive it with the
threaded workload.

Usage:
    tell-client read usertable user1                       # Read all fields
    tell-client read usertable user1 --fields name age     # Projection
    tell-client insert usertable user1 name=alice age=30   # Insert a record
    tell-client update usertable user1 age=31              # Update a record
    tell-client delete usertable user1                     # Delete a record
    tell-client --server "a:8713;b:8713" bench --threads 8 # Workload
    tell-client --debug read usertable user1               # Debug logging

Environment Variables:
    TELL_SERVER           - host or semicolon-separated host:port list
    TELL_SERVER_PORT      - default port
    TELL_RECORD_ENCODING  - legacy or values
    TELL_OPCODE_MAPPING   - standard or swapped
    TELL_TIMEOUT          - socket timeout in seconds (unset: none)
    TELL_DEBUG            - enable debug mode (true/false)
"""

import argparse
import json
import logging
import sys
from typing import Dict, List, Optional

from .client import TellStoreClient
from .config.settings import (
    OPCODE_MAPPING_PROPERTY,
    PORT_PROPERTY,
    RECORD_ENCODING_PROPERTY,
    SERVER_PROPERTY,
    TIMEOUT_PROPERTY,
    settings,
)
from .protocol.codec import RecordEncoding
from .protocol.commands import OPCODE_MAPPINGS, Status
from .protocol.errors import ClientError
from .workload import WorkloadConfig, print_results, run_workload

logger = logging.getLogger(__name__)


def parse_field_values(pairs: List[str]) -> Dict[str, bytes]:
    """
    Parse ``name=value`` arguments into a record.

    Raises:
        argparse.ArgumentTypeError: if an argument has no ``=``
    """
    record = {}
    for pair in pairs:
        name, sep, value = pair.partition("=")
        if not sep or not name:
            raise argparse.ArgumentTypeError(f"Expected field=value, got {pair!r}")
        record[name] = value.encode("utf-8")
    return record


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="tell-client",
        description="tell-client: TellStore binary protocol client",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--server",
        type=str,
        default=settings.SERVER,
        help="Server host, or semicolon-separated host:port list",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=settings.SERVER_PORT,
        help="Default server port",
    )
    parser.add_argument(
        "--record-encoding",
        choices=[e.value for e in RecordEncoding],
        default=settings.RECORD_ENCODING,
        help="Record layout used for insert/update",
    )
    parser.add_argument(
        "--opcode-mapping",
        choices=sorted(OPCODE_MAPPINGS),
        default=settings.OPCODE_MAPPING,
        help="Opcodes used for update/insert",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=settings.TIMEOUT,
        help="Socket timeout in seconds (default: block indefinitely)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        default=settings.DEBUG,
        help="Enable debug logging",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    read = commands.add_parser("read", help="Read a record")
    read.add_argument("table")
    read.add_argument("key")
    read.add_argument("--fields", nargs="+", default=None, help="Fields to return")

    for name in ("insert", "update"):
        write = commands.add_parser(name, help=f"{name.capitalize()} a record")
        write.add_argument("table")
        write.add_argument("key")
        write.add_argument("values", nargs="+", metavar="FIELD=VALUE")

    delete = commands.add_parser("delete", help="Delete a record")
    delete.add_argument("table")
    delete.add_argument("key")

    bench = commands.add_parser(
        "bench",
        help="Run a threaded workload",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    defaults = WorkloadConfig()
    bench.add_argument("--threads", "-t", type=int, default=defaults.threads)
    bench.add_argument("--operations", "-n", type=int, default=defaults.operations_per_thread,
                       help="Operations per thread")
    bench.add_argument("--records", type=int, default=defaults.records_per_thread,
                       help="Records inserted per thread before the run")
    bench.add_argument("--table", default=defaults.table)
    bench.add_argument("--field-count", type=int, default=defaults.field_count)
    bench.add_argument("--field-length", type=int, default=defaults.field_length)
    bench.add_argument("--read-proportion", type=float, default=defaults.read_proportion)
    bench.add_argument("--update-proportion", type=float, default=defaults.update_proportion)
    bench.add_argument("--insert-proportion", type=float, default=defaults.insert_proportion)
    bench.add_argument("--delete-proportion", type=float, default=defaults.delete_proportion)
    bench.add_argument("--seed", type=int, default=None)
    bench.add_argument("--output", "-o", type=str, default=None,
                       help="Write results as JSON to this file")

    return parser.parse_args(argv)


def setup_logging(debug: bool = False) -> None:
    """Configure logging based on debug flag."""
    level = logging.DEBUG if debug else getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stderr),
        ]
    )


def build_properties(args: argparse.Namespace) -> Dict[str, str]:
    """Translate command line options into harness properties."""
    properties = {
        SERVER_PROPERTY: args.server,
        PORT_PROPERTY: str(args.port),
        RECORD_ENCODING_PROPERTY: args.record_encoding,
        OPCODE_MAPPING_PROPERTY: args.opcode_mapping,
    }
    if args.timeout is not None:
        properties[TIMEOUT_PROPERTY] = str(args.timeout)
    return properties


def format_record(record: Dict[str, bytes]) -> str:
    """Render a record as JSON, decoding values as UTF-8 where possible."""
    rendered = {}
    for name, value in sorted(record.items()):
        try:
            rendered[name] = value.decode("utf-8")
        except UnicodeDecodeError:
            rendered[name] = value.hex()
    return json.dumps(rendered, indent=2)


def run_command(args: argparse.Namespace, client: TellStoreClient) -> Status:
    """Execute a single-operation command on an initialized client."""
    if args.command == "read":
        response = client.read_record(args.table, args.key, args.fields)
        if response.status is Status.OK:
            print(format_record(response.record))
        return response.status
    if args.command in ("insert", "update"):
        values = parse_field_values(args.values)
        operation = client.insert if args.command == "insert" else client.update
        return operation(args.table, args.key, values)
    if args.command == "delete":
        return client.delete(args.table, args.key)
    raise ValueError(f"Unknown command: {args.command}")


def run_bench(args: argparse.Namespace, properties: Dict[str, str]) -> int:
    """Run the workload and report; exit code 1 if any request failed."""
    config = WorkloadConfig(
        threads=args.threads,
        operations_per_thread=args.operations,
        records_per_thread=args.records,
        table=args.table,
        field_count=args.field_count,
        field_length=args.field_length,
        read_proportion=args.read_proportion,
        update_proportion=args.update_proportion,
        insert_proportion=args.insert_proportion,
        delete_proportion=args.delete_proportion,
        seed=args.seed,
    )
    results = run_workload(config, lambda: TellStoreClient(properties))
    print_results(results)

    if args.output:
        with open(args.output, "w") as f:
            json.dump(results.to_dict(), f, indent=2)
        print(f"Results saved to {args.output}")

    return 0 if results.failed_requests == 0 and results.failed_clients == 0 else 1


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point; returns the process exit code."""
    args = parse_args(argv)
    setup_logging(debug=args.debug)
    properties = build_properties(args)

    if args.command == "bench":
        try:
            return run_bench(args, properties)
        except ValueError as e:
            logger.error(f"Invalid workload: {e}")
            return 2

    client = TellStoreClient(properties)
    try:
        client.init()
    except (ClientError, ValueError) as e:
        logger.error(f"Could not start client: {e}")
        return 2

    try:
        status = run_command(args, client)
    except argparse.ArgumentTypeError as e:
        logger.error(str(e))
        return 2
    finally:
        client.cleanup()

    print(status.value)
    return 0 if status.is_ok else 1


if __name__ == "__main__":
    sys.exit(main())
