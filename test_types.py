"""Typed objects for natural-language browser tests."""
from __future__ import annotations

import hashlib
import inspect
import json
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Literal, Optional, Union

from exceptions import TestValidationError

Hook = Callable[["TestContext"], Union[None, Awaitable[None]]]
VerdictResult = Literal["pass", "fail"]


async def invoke_callback(callback: Hook, context: "TestContext") -> None:
    """Call a sync or async user callback with the shared test context."""
    outcome = callback(context)
    if inspect.isawaitable(outcome):
        await outcome


def describe_error(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__


def canonical_payload(value: Any, test_name: Optional[str] = None) -> Any:
    """
    Normalize a payload into plain JSON data with a stable ordering.

    Tuples become lists, sets become lists sorted by their encoded members and
    dates become ISO strings. Anything else that JSON cannot represent raises
    TestValidationError.
    """
    if value is None or isinstance(value, (str, bool, int, float)):
        return value
    if isinstance(value, dict):
        canonical = {}
        for key, item in value.items():
            if not isinstance(key, str):
                # JSON object keys; ints, floats, bools and None encode like json.dumps does
                if key is not None and not isinstance(key, (int, float)):
                    raise TestValidationError(
                        f"Payload keys must be strings, got {type(key).__name__}", test_name=test_name, field="payload"
                    )
                key = json.dumps(key)
            canonical[key] = canonical_payload(item, test_name)
        return canonical
    if isinstance(value, (list, tuple)):
        return [canonical_payload(item, test_name) for item in value]
    if isinstance(value, (set, frozenset)):
        items = [canonical_payload(item, test_name) for item in value]
        return sorted(items, key=lambda item: json.dumps(item, sort_keys=True, separators=(",", ":")))
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    raise TestValidationError(
        f"Payload value of type {type(value).__name__} is not JSON serializable",
        test_name=test_name,
        field="payload",
    )


@dataclass
class TestDefinition:
    """Single natural-language test."""

    __test__ = False

    name: str
    steps: List[str] = field(default_factory=list)
    payload: Optional[Any] = None
    before: Optional[Hook] = None
    after: Optional[Hook] = None
    during: Optional[Hook] = None
    direct: bool = False
    max_turns: Optional[int] = None

    def __post_init__(self):
        canonical_payload(self.payload, self.name)

    @property
    def has_callbacks(self) -> bool:
        return any(fn is not None for fn in (self.before, self.after, self.during))

    def fingerprint(self) -> str:
        """
        Deterministic cache identity.

        Covers the name, the steps, the payload and which callbacks are present.
        Callback bodies are not hashed, so editing a hook alone keeps the same
        fingerprint.
        """
        identity = {
            "name": self.name,
            "steps": list(self.steps),
            "payload": canonical_payload(self.payload, self.name),
            "callbacks": {
                "before": self.before is not None,
                "after": self.after is not None,
                "during": self.during is not None,
            },
        }
        encoded = json.dumps(identity, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


class TestSuite:
    """Tests and hooks declared by one test file.

    Built explicitly by the loading step and handed to the runner, so no
    registration state is shared between files.
    """

    __test__ = False

    def __init__(self, name: str = ""):
        self.name = name
        self.tests: List[TestDefinition] = []
        self.before_all_hooks: List[Hook] = []
        self.after_all_hooks: List[Hook] = []
        self.before_each_hooks: List[Hook] = []
        self.after_each_hooks: List[Hook] = []

    def __len__(self) -> int:
        return len(self.tests)

    def add(self, definition: TestDefinition) -> TestDefinition:
        self.tests.append(definition)
        return definition

    def test(
        self,
        name: str,
        steps: Optional[List[str]] = None,
        *,
        payload: Optional[Any] = None,
        before: Optional[Hook] = None,
        after: Optional[Hook] = None,
        during: Optional[Hook] = None,
        max_turns: Optional[int] = None,
    ) -> TestDefinition:
        """Declare an AI-driven test."""
        return self.add(
            TestDefinition(
                name=name,
                steps=list(steps or []),
                payload=payload,
                before=before,
                after=after,
                during=during,
                max_turns=max_turns,
            )
        )

    def direct(self, name: str) -> Callable[[Hook], Hook]:
        """Decorator declaring a test that runs its callback without the model."""

        def register(fn: Hook) -> Hook:
            self.add(TestDefinition(name=name, during=fn, direct=True))
            return fn

        return register

    def before_all(self, fn: Hook) -> Hook:
        self.before_all_hooks.append(fn)
        return fn

    def after_all(self, fn: Hook) -> Hook:
        self.after_all_hooks.append(fn)
        return fn

    def before_each(self, fn: Hook) -> Hook:
        self.before_each_hooks.append(fn)
        return fn

    def after_each(self, fn: Hook) -> Hook:
        self.after_each_hooks.append(fn)
        return fn


@dataclass
class TestContext:
    """Shared state handed to every hook and callback of one test file."""

    __test__ = False

    session: Any
    base_url: str = ""
    current_test: Optional[TestDefinition] = None

    @property
    def page(self) -> Any:
        return getattr(self.session, "page", None)

    async def new_request_context(self, **kwargs: Any) -> Any:
        """Playwright API request context bound to the target base URL."""
        return await self.session.new_request_context(base_url=self.base_url, **kwargs)


@dataclass
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total(self) -> int:
        return self.input_tokens + self.output_tokens

    def add(self, other: "TokenUsage") -> None:
        self.input_tokens += other.input_tokens
        self.output_tokens += other.output_tokens


@dataclass
class Verdict:
    """Terminal pass/fail of one test execution."""

    result: VerdictResult
    reason: str
    usage: TokenUsage = field(default_factory=TokenUsage)

    @property
    def passed(self) -> bool:
        return self.result == "pass"

    @classmethod
    def passing(cls, reason: str, usage: Optional[TokenUsage] = None) -> "Verdict":
        return cls(result="pass", reason=reason, usage=usage or TokenUsage())

    @classmethod
    def failing(cls, reason: str, usage: Optional[TokenUsage] = None) -> "Verdict":
        return cls(result="fail", reason=reason, usage=usage or TokenUsage())


@dataclass
class TestOutcome:
    """Verdict for one test plus how it was produced."""

    __test__ = False

    name: str
    verdict: Verdict
    source: Literal["agent", "cache", "direct", "hook", "skipped"] = "agent"
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def passed(self) -> bool:
        return self.verdict.passed

    @property
    def duration_seconds(self) -> float:
        if not self.started_at or not self.finished_at:
            return 0.0
        return max(0.0, (self.finished_at - self.started_at).total_seconds())


@dataclass
class FileResult:
    """Outcome of running every test in one file."""

    path: Path
    outcomes: List[TestOutcome] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def status(self) -> Literal["passed", "failed"]:
        if self.error or any(not o.passed for o in self.outcomes):
            return "failed"
        return "passed"

    @property
    def passed(self) -> bool:
        return self.status == "passed"

    @property
    def verdicts(self) -> Dict[str, Verdict]:
        return {o.name: o.verdict for o in self.outcomes}

    @property
    def usage(self) -> TokenUsage:
        total = TokenUsage()
        for outcome in self.outcomes:
            total.add(outcome.verdict.usage)
        return total


@dataclass
class SuiteResult:
    """Aggregated results for a whole run."""

    files: List[FileResult]
    started_at: datetime
    finished_at: datetime

    @property
    def outcomes(self) -> List[TestOutcome]:
        return [o for f in self.files for o in f.outcomes]

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def passed(self) -> int:
        return sum(1 for o in self.outcomes if o.passed)

    @property
    def failed(self) -> int:
        return self.total - self.passed

    @property
    def all_passed(self) -> bool:
        return all(f.passed for f in self.files)

    @property
    def duration_seconds(self) -> float:
        return max(0.0, (self.finished_at - self.started_at).total_seconds())

    @property
    def usage(self) -> TokenUsage:
        total = TokenUsage()
        for f in self.files:
            total.add(f.usage)
        return total
