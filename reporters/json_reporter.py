"""JSON report generator for test runs."""
from __future__ import annotations

import json
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict

from reporters.base import BaseReporter, ReportFormat
from test_types import FileResult, SuiteResult, TestOutcome


class JSONReporter(BaseReporter):
    """Generate machine-readable JSON reports."""

    @property
    def format(self) -> ReportFormat:
        return ReportFormat.JSON

    def _outcome_to_dict(self, outcome: TestOutcome) -> Dict[str, Any]:
        """Convert TestOutcome to JSON-serializable dict."""
        return {
            "name": outcome.name,
            "result": outcome.verdict.result,
            "reason": outcome.verdict.reason,
            "source": outcome.source,
            "duration_seconds": round(outcome.duration_seconds, 3),
            "tokens": {
                "input": outcome.verdict.usage.input_tokens,
                "output": outcome.verdict.usage.output_tokens,
            },
        }

    def _file_to_dict(self, result: FileResult) -> Dict[str, Any]:
        """Convert FileResult to JSON-serializable dict."""
        return {
            "path": str(result.path),
            "status": result.status,
            "error": result.error,
            "tests": [self._outcome_to_dict(o) for o in result.outcomes],
        }

    def generate(self, result: FileResult, output_dir: Path) -> Path:
        """Generate JSON report for a single test file."""
        output_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
        slug = re.sub(r"[^A-Za-z0-9_-]+", "-", Path(result.path).stem).strip("-") or "file"
        target = output_dir / f"{slug}-{timestamp}.json"

        passed = sum(1 for o in result.outcomes if o.passed)
        report_data = {
            "generated_at": datetime.now(timezone.utc).isoformat(),
            "report_version": "1.0",
            "files": [self._file_to_dict(result)],
            "summary": {
                "total": len(result.outcomes),
                "passed": passed,
                "failed": len(result.outcomes) - passed,
            },
        }

        target.write_text(json.dumps(report_data, indent=2), encoding="utf-8")
        return target

    def generate_suite(self, suite: SuiteResult, output_dir: Path) -> Path:
        """Generate combined JSON report for a whole run."""
        output_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
        target = output_dir / f"suite-{timestamp}.json"

        cached = sum(1 for o in suite.outcomes if o.source == "cache")
        report_data = {
            "generated_at": datetime.now(timezone.utc).isoformat(),
            "report_version": "1.0",
            "files": [self._file_to_dict(f) for f in suite.files],
            "summary": {
                "total": suite.total,
                "passed": suite.passed,
                "failed": suite.failed,
                "replayed_from_cache": cached,
                "duration_seconds": round(suite.duration_seconds, 2),
                "input_tokens": suite.usage.input_tokens,
                "output_tokens": suite.usage.output_tokens,
            },
            "failed_tests": [
                {"file": str(f.path), "name": o.name, "reason": o.verdict.reason}
                for f in suite.files
                for o in f.outcomes
                if not o.passed
            ],
        }

        target.write_text(json.dumps(report_data, indent=2), encoding="utf-8")
        return target
