import sys
from pathlib import Path

import pytest

TESTS_DIR = Path(__file__).resolve().parent
SCRIPTS_DIR = TESTS_DIR.parent / "scripts"

for path in (SCRIPTS_DIR, TESTS_DIR):
    path_str = str(path)
    if path_str not in sys.path:
        sys.path.insert(0, path_str)

from pipeline_config import PipelineConfig  # noqa: E402


@pytest.fixture
def pipeline_config(tmp_path: Path) -> PipelineConfig:
    return PipelineConfig(
        records_path=tmp_path / "records",
        reports_path=tmp_path / "reports",
        spreadsheet_path=tmp_path / "spreadsheet",
        field_descriptions_path=tmp_path / "fields",
        poll_timeout=1000,
        poll_interval=10,
        report_workers=2,
    )
