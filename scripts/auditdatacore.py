#!/usr/bin/env python3

import argparse
import logging
import sys
import time
from datetime import datetime

from dotenv import load_dotenv

from download_records import add_credential_arguments, connect, extract, parse_object_names
from generate_reports import generate_reports
from generate_spreadsheet import compile_spreadsheet
from pipeline_config import ConfigError, load_config
from pipeline_utils import configure_logging
from sf_connection import AuthenticationError

load_dotenv()

logger = logging.getLogger(__name__)


def run_stage(name, func, *args, **kwargs):
    print(f"\n{'='*50}")
    print(f"Running {name}...")
    print(f"{'='*50}\n")

    start_time = time.time()
    result = func(*args, **kwargs)
    print(f"\nCompleted {name} in {time.time() - start_time:.2f} seconds")
    return result


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description='Run extract, report and spreadsheet stages in sequence')
    add_credential_arguments(parser)
    parser.add_argument('--config', '-c', type=str, default=None,
                        help='Path to the pipeline config JSON (default: config.json in the working directory)')
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    try:
        config = load_config(args.config)
    except ConfigError as e:
        configure_logging()
        logger.error(f"Configuration error: {e}")
        sys.exit(1)
    configure_logging(config.log_level)

    objects = parse_object_names(args.objects)
    if not objects:
        logger.error("No objects specified")
        sys.exit(1)

    print(f"\nStarting Audit Data Core at {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print(f"Objects: {', '.join(objects)}\n")

    try:
        connection = connect(args, config)
    except AuthenticationError as e:
        logger.error(f"Login failed: {e}")
        sys.exit(1)

    results = [
        run_stage("extract", extract, connection, objects, config),
        run_stage("report", generate_reports, config),
        run_stage("spreadsheet", compile_spreadsheet, config),
    ]

    # Print summary
    print(f"\n{'='*50}")
    print("Audit Summary:")
    print(f"{'='*50}")

    for result in results:
        status = "✓ Success" if result.ok else "✗ Failed"
        print(f"{result.summary()} - {status}")
        for outcome in result.failures:
            print(f"    {outcome.item}: {outcome.error}")

    print(f"\nCompleted all stages at {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    if results[-1].succeeded:
        print(f"Spreadsheet: {config.spreadsheet_file}")

    sys.exit(0 if all(r.ok for r in results) else 1)


if __name__ == "__main__":
    main()
