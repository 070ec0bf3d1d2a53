"""Base reporter interface for test runs."""
from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path

from test_types import FileResult, SuiteResult


class ReportFormat(str, Enum):
    """Supported report formats."""
    JSON = "json"


class BaseReporter(ABC):
    """Abstract base class for report generators."""

    @abstractmethod
    def generate(self, result: FileResult, output_dir: Path) -> Path:
        """
        Generate a report for a single test file.

        Args:
            result: Outcome of every test in the file
            output_dir: Directory to write report to

        Returns:
            Path to the generated report file
        """
        pass

    @abstractmethod
    def generate_suite(self, suite: SuiteResult, output_dir: Path) -> Path:
        """
        Generate a combined report for a whole run.

        Args:
            suite: Aggregated file results
            output_dir: Directory to write report to

        Returns:
            Path to the generated report file
        """
        pass

    @property
    @abstractmethod
    def format(self) -> ReportFormat:
        """Return the report format this reporter generates."""
        pass
