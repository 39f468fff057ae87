#!/usr/bin/env python3

import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'

SUCCESS = "success"
SKIPPED = "skipped"
FAILED = "failed"


class WriteStreamError(Exception):
    """Raised when an output file cannot be written."""


class ParseError(Exception):
    """Raised when a record file cannot be parsed as CSV."""


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging for a pipeline entry point."""
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format=LOG_FORMAT
    )


@dataclass
class ItemOutcome:
    """Result of processing one object or file within a stage."""

    item: str
    status: str
    error: Optional[Exception] = None
    output_path: Optional[Path] = None

    @property
    def ok(self) -> bool:
        return self.status != FAILED


@dataclass
class StageResult:
    """Partial-failure aggregate for a whole stage run."""

    stage: str
    outcomes: List[ItemOutcome] = field(default_factory=list)
    input_empty: bool = False

    def add(self, outcome: ItemOutcome) -> ItemOutcome:
        self.outcomes.append(outcome)
        return outcome

    @property
    def failures(self) -> List[ItemOutcome]:
        return [o for o in self.outcomes if o.status == FAILED]

    @property
    def succeeded(self) -> List[ItemOutcome]:
        return [o for o in self.outcomes if o.status == SUCCESS]

    @property
    def ok(self) -> bool:
        return not self.failures

    def summary(self) -> str:
        skipped = len(self.outcomes) - len(self.failures) - len(self.succeeded)
        return (f"{self.stage}: {len(self.succeeded)} succeeded, "
                f"{skipped} skipped, {len(self.failures)} failed")


def prepare_output_directory(path: Union[str, Path]) -> Path:
    """Create the directory if missing, or empty it if it already has contents.

    Safe to call repeatedly; the directory itself is kept so that any handle
    on the path stays valid.
    """
    path = Path(path)
    if path.exists() and not path.is_dir():
        raise NotADirectoryError(f"Output path is not a directory: {path}")

    if path.is_dir():
        for entry in path.iterdir():
            if entry.is_dir() and not entry.is_symlink():
                shutil.rmtree(entry)
            else:
                entry.unlink()
        logger.debug(f"Cleared output directory {path}")
    else:
        path.mkdir(parents=True, exist_ok=True)
        logger.debug(f"Created output directory {path}")
    return path


def list_input_files(path: Union[str, Path], suffix: Optional[str] = None) -> List[Path]:
    """Sorted regular files in a directory; a missing directory counts as empty."""
    path = Path(path)
    if not path.is_dir():
        return []
    files = [p for p in path.iterdir() if p.is_file()]
    if suffix:
        files = [p for p in files if p.suffix.lower() == suffix.lower()]
    return sorted(files)
