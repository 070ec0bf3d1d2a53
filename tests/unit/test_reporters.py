"""Unit tests for reporters module."""
from __future__ import annotations

import json
from pathlib import Path

from reporters import JSONReporter, ReportFormat
from test_types import FileResult, SuiteResult


class TestJSONReporter:
    """Tests for JSON reporter."""

    def test_format(self):
        assert JSONReporter().format == ReportFormat.JSON

    def test_generates_valid_json(self, temp_dir: Path, sample_file_result: FileResult):
        reporter = JSONReporter()
        report_path = reporter.generate(sample_file_result, temp_dir / "reports")

        assert report_path.exists()
        assert report_path.suffix == ".json"
        assert report_path.name.startswith("auth-e2e-")

        data = json.loads(report_path.read_text())
        assert data["summary"] == {"total": 2, "passed": 1, "failed": 1}
        assert len(data["files"]) == 1

    def test_json_structure(self, temp_dir: Path, sample_file_result: FileResult):
        report_path = JSONReporter().generate(sample_file_result, temp_dir)
        data = json.loads(report_path.read_text())

        file_entry = data["files"][0]
        assert file_entry["status"] == "failed"
        assert file_entry["error"] is None

        login, logout = file_entry["tests"]
        assert login == {
            "name": "login",
            "result": "pass",
            "reason": "replayed from cache",
            "source": "cache",
            "duration_seconds": 4.0,
            "tokens": {"input": 0, "output": 0},
        }
        assert logout["result"] == "fail"
        assert logout["tokens"] == {"input": 1200, "output": 80}

    def test_suite_report(self, temp_dir: Path, sample_suite_result: SuiteResult):
        report_path = JSONReporter().generate_suite(sample_suite_result, temp_dir)
        data = json.loads(report_path.read_text())

        summary = data["summary"]
        assert summary["total"] == 2
        assert summary["passed"] == 1
        assert summary["failed"] == 1
        assert summary["replayed_from_cache"] == 1
        assert summary["duration_seconds"] == 42.0
        assert summary["input_tokens"] == 1200
        assert summary["output_tokens"] == 80

        assert data["failed_tests"] == [
            {"file": str(Path("e2e/auth.e2e.py")), "name": "logout", "reason": "Log out button not found"}
        ]
        broken = data["files"][1]
        assert broken["status"] == "failed"
        assert broken["error"] == "Failed to read test file"
        assert broken["tests"] == []
