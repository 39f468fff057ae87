#!/usr/bin/env python3

import argparse
import csv
import json
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from openpyxl import Workbook
from openpyxl.utils import get_column_letter

from pipeline_config import ConfigError, PipelineConfig, load_config
from pipeline_utils import (FAILED, SUCCESS, ItemOutcome, StageResult, configure_logging,
                            list_input_files, prepare_output_directory)

logger = logging.getLogger(__name__)

WORKSHEET_HEADER = ['Field', 'Total Records', 'Populated Records', 'Utilization Percentage', 'Description']
WIDE_COLUMN_WIDTH = 50
NARROW_COLUMN_WIDTH = 35
# Excel rejects sheet titles longer than this
MAX_SHEET_TITLE = 31


@dataclass
class WorksheetRow:
    field: str
    total: int
    populated: int
    utilization_percentage: float
    description: str = ""

    def as_list(self) -> list:
        return [self.field, self.total, self.populated, self.utilization_percentage, self.description]


def compute_utilization(total: int, populated: int) -> float:
    """Populated share as a percentage rounded to 2 decimals; 0 when there are no records"""
    if not total:
        return 0
    return round(populated / total * 100, 2)


def load_field_descriptions(directory: Optional[Path], object_name: str) -> Dict[str, Optional[str]]:
    """Load the field -> help text mapping saved by the extractor.

    A missing or unreadable file yields an empty mapping.
    """
    if directory is None:
        return {}
    path = Path(directory) / f"{object_name}.json"
    if not path.is_file():
        return {}
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Could not read field descriptions {path}: {e}")
        return {}
    if not isinstance(data, dict):
        logger.warning(f"Field descriptions in {path} are not a JSON object, ignoring")
        return {}
    return data


def read_report_rows(report_path: Path, descriptions: Dict[str, Optional[str]]) -> List[WorksheetRow]:
    """Parse a report CSV into worksheet rows, skipping the header and bad rows"""
    rows = []
    with open(report_path, 'r', newline='', encoding='utf-8') as f:
        reader = csv.reader(f)
        next(reader, None)
        for line_number, row in enumerate(reader, start=2):
            if not row:
                continue
            if len(row) < 3:
                logger.warning(f"{report_path.name}:{line_number}: expected 3 columns, got {len(row)}; skipping")
                continue
            field, total, populated = row[0], row[1], row[2]
            try:
                total_records = int(total)
                populated_records = int(populated)
            except ValueError:
                logger.warning(f"{report_path.name}:{line_number}: non-numeric counts for {field}; skipping")
                continue
            rows.append(WorksheetRow(
                field=field,
                total=total_records,
                populated=populated_records,
                utilization_percentage=compute_utilization(total_records, populated_records),
                description=descriptions.get(field) or ""
            ))
    return rows


def unique_sheet_title(workbook: Workbook, object_name: str) -> str:
    """Sheet title within Excel's length limit, numbered if it collides.

    Excel compares titles case-insensitively, so collisions do too.
    """
    taken = {ws.title.lower() for ws in workbook.worksheets}
    title = object_name[:MAX_SHEET_TITLE]
    counter = 1
    while title.lower() in taken:
        suffix = str(counter)
        title = object_name[:MAX_SHEET_TITLE - len(suffix)] + suffix
        counter += 1
    return title


def add_object_worksheet(workbook: Workbook, object_name: str, rows: List[WorksheetRow]):
    """Add one worksheet for an object with header, data rows and column widths."""
    worksheet = workbook.create_sheet(title=unique_sheet_title(workbook, object_name))
    worksheet.append(WORKSHEET_HEADER)
    for row in rows:
        worksheet.append(row.as_list())
        worksheet.cell(row=worksheet.max_row, column=4).number_format = '0.00'

    # Field and Description are wide, the numeric columns narrower
    for index in range(1, len(WORKSHEET_HEADER) + 1):
        width = WIDE_COLUMN_WIDTH if index in (1, 5) else NARROW_COLUMN_WIDTH
        worksheet.column_dimensions[get_column_letter(index)].width = width
    return worksheet


def compile_spreadsheet(config: PipelineConfig, include_descriptions: bool = True) -> StageResult:
    """Compile every CSV report into one workbook, one worksheet per object.

    Args:
        config: Pipeline configuration
        include_descriptions: Join field help text from the extractor's metadata

    Returns:
        StageResult with one outcome per report file
    """
    result = StageResult("spreadsheet")
    prepare_output_directory(config.spreadsheet_path)

    if not list_input_files(config.reports_path):
        logger.error(f"No reports found in the reports directory {config.reports_path}")
        result.input_empty = True
        return result

    descriptions_dir = config.field_descriptions_path if include_descriptions else None
    workbook = Workbook()
    workbook.remove(workbook.active)

    for report_path in list_input_files(config.reports_path, suffix='.csv'):
        object_name = report_path.stem
        try:
            descriptions = load_field_descriptions(descriptions_dir, object_name)
            rows = read_report_rows(report_path, descriptions)
            add_object_worksheet(workbook, object_name, rows)
        except (OSError, UnicodeDecodeError, csv.Error, ValueError) as e:
            logger.error(f"Error adding worksheet for {report_path.name}: {e}")
            result.add(ItemOutcome(report_path.name, FAILED, error=e))
            continue
        logger.info(f"Added worksheet {object_name} ({len(rows)} fields)")
        result.add(ItemOutcome(report_path.name, SUCCESS))

    if not workbook.worksheets:
        logger.error("No worksheets were produced; spreadsheet not written")
        return result

    spreadsheet_file = config.spreadsheet_file
    workbook.save(spreadsheet_file)
    for outcome in result.succeeded:
        outcome.output_path = spreadsheet_file
    logger.info(f"Spreadsheet generated: {spreadsheet_file}")
    return result


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description='Compile field population reports into an Excel workbook')
    parser.add_argument('--config', '-c', type=str, default=None,
                        help='Path to the pipeline config JSON (default: config.json in the working directory)')
    parser.add_argument('--no-descriptions', action='store_true',
                        help='Leave the Description column empty instead of joining field help text')
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

    result = compile_spreadsheet(config, include_descriptions=not args.no_descriptions)
    sys.exit(0 if result.ok else 1)


if __name__ == "__main__":
    main()
