#!/usr/bin/env python3

import argparse
import csv
import logging
import sys
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List

import pandas as pd

from pipeline_config import ConfigError, PipelineConfig, load_config
from pipeline_utils import (FAILED, SUCCESS, ItemOutcome, ParseError, StageResult, WriteStreamError,
                            configure_logging, list_input_files, prepare_output_directory)

logger = logging.getLogger(__name__)

REPORT_HEADER = ['Field', 'Total Records', 'Populated Records']
DEFAULT_CHUNK_SIZE = 10000


@dataclass
class FieldStat:
    field: str
    total: int = 0
    populated: int = 0


def count_field_population(record_path: Path, chunk_size: int = DEFAULT_CHUNK_SIZE) -> List[FieldStat]:
    """Count total and populated values per field in a record CSV.

    The file is read in chunks so memory stays bounded by chunk_size rows.
    A value counts as populated when it is present and not an empty string.
    Fields are listed in the order they are first seen in a data row, so a
    file with only a header yields no stats.

    Args:
        record_path: CSV dump written by the extractor
        chunk_size: Number of rows parsed per chunk

    Returns:
        List of FieldStat in first-seen order
    """
    counts: Dict[str, FieldStat] = {}
    try:
        # Keep raw strings: no type inference, no "NA"/"null" -> NaN conversion
        reader = pd.read_csv(record_path, dtype=str, keep_default_na=False, na_filter=False,
                             chunksize=chunk_size, encoding='utf-8')
        with reader:
            for chunk in reader:
                if chunk.empty:
                    continue
                populated = (chunk.notna() & chunk.ne("")).sum()
                rows = len(chunk)
                for field in chunk.columns:
                    stat = counts.get(field)
                    if stat is None:
                        stat = counts[field] = FieldStat(field)
                    stat.total += rows
                    stat.populated += int(populated[field])
    except pd.errors.EmptyDataError:
        logger.warning(f"Record file {record_path} is empty")
        return []
    except (pd.errors.ParserError, UnicodeDecodeError) as e:
        raise ParseError(f"Error parsing {record_path}: {e}") from e

    return list(counts.values())


def write_report(stats: List[FieldStat], report_path: Path) -> Path:
    """Write field stats as a CSV report"""
    try:
        with open(report_path, 'w', newline='', encoding='utf-8') as csvfile:
            writer = csv.writer(csvfile)
            writer.writerow(REPORT_HEADER)
            for stat in stats:
                writer.writerow([stat.field, stat.total, stat.populated])
    except OSError as e:
        raise WriteStreamError(f"Error writing report {report_path}: {e}") from e
    return report_path


def generate_report(record_path: Path, reports_dir: Path) -> ItemOutcome:
    """Build the report for a single record file; errors are captured, not raised"""
    file_name = record_path.name
    try:
        stats = count_field_population(record_path)
        report_path = write_report(stats, Path(reports_dir) / file_name)
    except ParseError as e:
        logger.error(f"Error reading file {file_name}: {e}")
        return ItemOutcome(file_name, FAILED, error=e)
    except (WriteStreamError, OSError) as e:
        logger.error(f"Error generating CSV report for {file_name}: {e}")
        return ItemOutcome(file_name, FAILED, error=e)
    except Exception as e:
        logger.exception(f"Unexpected error generating CSV report for {file_name}")
        return ItemOutcome(file_name, FAILED, error=e)

    logger.info(f"CSV report generated for {file_name}: {report_path}")
    return ItemOutcome(file_name, SUCCESS, output_path=report_path)


def generate_reports(config: PipelineConfig) -> StageResult:
    """Generate a field population report for each file in the records directory.

    Files are processed concurrently on a bounded thread pool. A failing file
    does not stop its siblings; the returned result lists every outcome.
    """
    result = StageResult("report")
    prepare_output_directory(config.reports_path)

    record_files = list_input_files(config.records_path)
    if not record_files:
        logger.error(f"No records found in the records directory {config.records_path}")
        result.input_empty = True
        return result

    workers = min(config.report_workers, len(record_files))
    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = [pool.submit(generate_report, path, config.reports_path) for path in record_files]
        for future in futures:
            result.add(future.result())

    if result.ok:
        logger.info("All reports generated.")
    else:
        failed = ', '.join(o.item for o in result.failures)
        logger.error(f"Error generating reports for: {failed}")
    return result


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description='Generate field population reports from downloaded records')
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

    result = generate_reports(config)
    sys.exit(0 if result.ok else 1)


if __name__ == "__main__":
    main()
