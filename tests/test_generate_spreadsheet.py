import json
from pathlib import Path

import pytest
from openpyxl import load_workbook

from generate_spreadsheet import WORKSHEET_HEADER, compile_spreadsheet, compute_utilization, read_report_rows


def _write_report(directory: Path, name: str, rows) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    lines = ["Field,Total Records,Populated Records"] + [",".join(str(v) for v in row) for row in rows]
    path = directory / name
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def _sheet_rows(worksheet):
    return [[cell if cell is not None else "" for cell in row] for row in worksheet.iter_rows(values_only=True)]


@pytest.mark.parametrize("total, populated, expected", [
    (100, 37, 37.0),
    (10, 10, 100.0),
    (10, 0, 0.0),
    (3, 1, 33.33),
    (3, 2, 66.67),
    (0, 0, 0),
])
def test_compute_utilization(total, populated, expected) -> None:
    assert compute_utilization(total, populated) == expected


def test_compile_account_report_without_descriptions(pipeline_config) -> None:
    _write_report(pipeline_config.reports_path, "Account.csv", [("Name", 10, 10), ("Phone", 10, 0)])

    result = compile_spreadsheet(pipeline_config)

    assert result.ok
    workbook = load_workbook(pipeline_config.spreadsheet_file)
    assert workbook.sheetnames == ["Account"]
    assert _sheet_rows(workbook["Account"]) == [
        WORKSHEET_HEADER,
        ["Name", 10, 10, 100.0, ""],
        ["Phone", 10, 0, 0.0, ""],
    ]
    assert workbook["Account"]["D2"].number_format == "0.00"


def test_descriptions_are_joined_from_field_metadata(pipeline_config) -> None:
    _write_report(pipeline_config.reports_path, "Account.csv", [("Name", 4, 3), ("Phone", 4, 1), ("Fax", 4, 0)])
    pipeline_config.field_descriptions_path.mkdir(parents=True)
    (pipeline_config.field_descriptions_path / "Account.json").write_text(
        json.dumps({"Name": "Legal name", "Phone": None}), encoding="utf-8")

    compile_spreadsheet(pipeline_config)

    rows = _sheet_rows(load_workbook(pipeline_config.spreadsheet_file)["Account"])
    assert rows[1] == ["Name", 4, 3, 75.0, "Legal name"]
    assert rows[2] == ["Phone", 4, 1, 25.0, ""]
    assert rows[3] == ["Fax", 4, 0, 0.0, ""]


def test_descriptions_can_be_left_out(pipeline_config) -> None:
    _write_report(pipeline_config.reports_path, "Account.csv", [("Name", 4, 3)])
    pipeline_config.field_descriptions_path.mkdir(parents=True)
    (pipeline_config.field_descriptions_path / "Account.json").write_text(json.dumps({"Name": "Legal name"}))

    compile_spreadsheet(pipeline_config, include_descriptions=False)

    rows = _sheet_rows(load_workbook(pipeline_config.spreadsheet_file)["Account"])
    assert rows[1][4] == ""


def test_one_sheet_per_report_and_non_csv_ignored(pipeline_config) -> None:
    _write_report(pipeline_config.reports_path, "Contact.csv", [("Email", 2, 1)])
    _write_report(pipeline_config.reports_path, "Account.csv", [("Name", 0, 0)])
    (pipeline_config.reports_path / "README.txt").write_text("not a report")

    compile_spreadsheet(pipeline_config)

    workbook = load_workbook(pipeline_config.spreadsheet_file)
    assert workbook.sheetnames == ["Account", "Contact"]
    assert _sheet_rows(workbook["Account"])[1] == ["Name", 0, 0, 0, ""]
    widths = {col: workbook["Contact"].column_dimensions[col].width for col in "ABCDE"}
    assert widths == {"A": 50, "B": 35, "C": 35, "D": 35, "E": 50}


def test_bad_rows_are_skipped(tmp_path: Path) -> None:
    path = tmp_path / "Lead.csv"
    path.write_text("Field,Total Records,Populated Records\nName,5,2\nBroken\nCount,x,1\n\n", encoding="utf-8")

    rows = read_report_rows(path, {})

    assert [(r.field, r.total, r.populated, r.utilization_percentage) for r in rows] == [("Name", 5, 2, 40.0)]


def test_empty_reports_directory_creates_no_workbook(pipeline_config) -> None:
    pipeline_config.reports_path.mkdir(parents=True)

    result = compile_spreadsheet(pipeline_config)

    assert result.input_empty
    assert not pipeline_config.spreadsheet_file.exists()


def test_compile_is_idempotent(pipeline_config) -> None:
    _write_report(pipeline_config.reports_path, "Account.csv", [("Name", 10, 10), ("Phone", 10, 3)])

    compile_spreadsheet(pipeline_config)
    first = _sheet_rows(load_workbook(pipeline_config.spreadsheet_file)["Account"])
    compile_spreadsheet(pipeline_config)
    second = _sheet_rows(load_workbook(pipeline_config.spreadsheet_file)["Account"])

    assert first == second
    assert [p.name for p in pipeline_config.spreadsheet_path.iterdir()] == ["Salesforce_Report.xlsx"]


def test_long_object_names_get_distinct_short_titles(pipeline_config) -> None:
    prefix = "Opportunity_Line_Item_Schedule_"
    _write_report(pipeline_config.reports_path, f"{prefix}A__c.csv", [("Name", 1, 1)])
    _write_report(pipeline_config.reports_path, f"{prefix}B__c.csv", [("Name", 1, 0)])

    result = compile_spreadsheet(pipeline_config)

    assert result.ok
    titles = load_workbook(pipeline_config.spreadsheet_file).sheetnames
    assert titles == [prefix, prefix[:30] + "1"]
    assert all(len(title) <= 31 for title in titles)


def test_reports_directory_without_csv_writes_no_workbook(pipeline_config) -> None:
    pipeline_config.reports_path.mkdir(parents=True)
    (pipeline_config.reports_path / "notes.txt").write_text("not a report")

    result = compile_spreadsheet(pipeline_config)

    assert not result.input_empty
    assert result.outcomes == []
    assert not pipeline_config.spreadsheet_file.exists()
