"""Orchestrator: sequences test files, runs hooks and picks cache replay or the agent."""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, List, Optional, Sequence, Tuple

from action_channel import ActionChannel, BrowserActionChannel
from actions import ActionDescriptor, BrowserAction
from agent import AgentLoop
from browser import BrowserSession
from config import PilotConfig
from exceptions import ActionError, AIError, CacheError, PilotError, StaleTraceError
from llm_client import ModelClient
from replay_cache import CacheScope, ReplayCache, Trace
from suite_loader import load_test_file
from test_types import (
    FileResult,
    Hook,
    SuiteResult,
    TestContext,
    TestDefinition,
    TestOutcome,
    TestSuite,
    Verdict,
    describe_error,
    invoke_callback,
)

REPLAYED_REASON = "replayed from cache"

SessionFactory = Callable[[PilotConfig, logging.Logger], Any]
ChannelFactory = Callable[[Any, TestContext], ActionChannel]


def _default_session_factory(config: PilotConfig, logger: logging.Logger) -> BrowserSession:
    return BrowserSession(
        browser_type=config.browser.browser,
        headless=config.browser.headless,
        viewport_width=config.browser.viewport_width,
        viewport_height=config.browser.viewport_height,
        slow_mo=config.browser.slow_mo,
        logger=logger,
    )


class TestOrchestrator:
    """Runs test files sequentially with one browser session per file."""

    __test__ = False

    def __init__(
        self,
        config: PilotConfig,
        model_client: Optional[ModelClient] = None,
        cache: Optional[ReplayCache] = None,
        logger: Optional[logging.Logger] = None,
        session_factory: Optional[SessionFactory] = None,
        channel_factory: Optional[ChannelFactory] = None,
    ):
        self.config = config
        self.logger = logger or logging.getLogger("runner")
        self.model_client = model_client or ModelClient(config.agent, logger=self.logger)
        self.cache = cache or ReplayCache(
            root=config.cache.directory,
            project=config.cache.project,
            logger=self.logger,
        )
        self._session_factory = session_factory or _default_session_factory
        self._channel_factory = channel_factory or (
            lambda session, context: BrowserActionChannel(
                session, context=context, base_url=config.base_url, logger=self.logger
            )
        )

    # ─────────────────────────────────────────────────────────────────────────
    # Files and suites
    # ─────────────────────────────────────────────────────────────────────────

    async def run_files(self, paths: Sequence[Path]) -> SuiteResult:
        """Run each file in order; a failing file never stops the next one."""
        started = datetime.now(timezone.utc)
        results = [await self.run_test_file(path) for path in paths]
        return SuiteResult(files=results, started_at=started, finished_at=datetime.now(timezone.utc))

    async def run_test_file(self, path: Path) -> FileResult:
        self.logger.info(f"=== {path} ===")
        try:
            suite = load_test_file(path)
        except PilotError as e:
            self.logger.error(f"Could not load {path}: {e}")
            return FileResult(path=path, error=str(e))
        return await self.run_suite(suite, path)

    async def run_suite(self, suite: TestSuite, path: Optional[Path] = None) -> FileResult:
        result = FileResult(path=path or Path(suite.name))
        session = self._session_factory(self.config, self.logger)
        try:
            await session.start()
            await session.goto(self.config.base_url)
        except Exception as e:
            reason = f"Browser initialization failed: {describe_error(e)}"
            self.logger.error(reason)
            await self._close_session(session)
            result.error = reason
            result.outcomes = [self._skipped(t, reason) for t in suite.tests]
            return result

        context = TestContext(session=session, base_url=self.config.base_url)
        channel = self._channel_factory(session, context)
        try:
            error = await self._run_hooks(suite.before_all_hooks, context)
            if error:
                reason = f"beforeAll hook failed: {error}"
                self.logger.error(reason)
                result.error = reason
                result.outcomes = [self._skipped(t, reason) for t in suite.tests]
                return result

            for index, definition in enumerate(suite.tests, 1):
                self.logger.info(f"Running test '{definition.name}' ({index}/{len(suite.tests)})")
                outcome = await self._run_with_each_hooks(suite, definition, channel, context)
                self.logger.info(
                    f"{'PASS' if outcome.passed else 'FAIL'} '{definition.name}' "
                    f"[{outcome.source}]: {outcome.verdict.reason}"
                )
                result.outcomes.append(outcome)

            error = await self._run_hooks(suite.after_all_hooks, context)
            if error:
                result.error = f"afterAll hook failed: {error}"
                self.logger.error(result.error)
        finally:
            context.current_test = None
            await self._close_session(session)
        return result

    async def _run_with_each_hooks(
        self,
        suite: TestSuite,
        definition: TestDefinition,
        channel: ActionChannel,
        context: TestContext,
    ) -> TestOutcome:
        started = datetime.now(timezone.utc)
        context.current_test = definition
        error = await self._run_hooks(suite.before_each_hooks, context)
        if error:
            outcome = TestOutcome(definition.name, Verdict.failing(f"beforeEach hook failed: {error}"), source="hook")
        else:
            try:
                outcome = await self.execute_test(definition, channel, context)
            except Exception as e:
                self.logger.error(f"Test '{definition.name}' crashed: {e}", exc_info=True)
                outcome = TestOutcome(definition.name, Verdict.failing(f"Runner exception: {describe_error(e)}"))

        error = await self._run_hooks(suite.after_each_hooks, context)
        if error:
            verdict = outcome.verdict
            outcome.verdict = Verdict.failing(f"{verdict.reason}, afterEach: {error}", usage=verdict.usage)
        outcome.started_at = started
        outcome.finished_at = datetime.now(timezone.utc)
        return outcome

    # ─────────────────────────────────────────────────────────────────────────
    # Single test
    # ─────────────────────────────────────────────────────────────────────────

    async def execute_test(
        self,
        definition: TestDefinition,
        channel: ActionChannel,
        context: TestContext,
    ) -> TestOutcome:
        """Run one test: direct callback, or hooks around replay/agent."""
        context.current_test = definition
        if definition.direct:
            return await self._run_direct(definition, context)

        before_error = await self._run_hook(definition.before, context)
        if before_error:
            reason = before_error
            after_error = await self._run_hook(definition.after, context)
            if after_error:
                reason = f"{before_error}, After: {after_error}"
            return TestOutcome(definition.name, Verdict.failing(reason), source="hook")

        verdict, source = await self._run_verdict(definition, channel)

        after_error = await self._run_hook(definition.after, context)
        if after_error:
            verdict = Verdict.failing(f"AI: {verdict.reason}, After: {after_error}", usage=verdict.usage)
        return TestOutcome(definition.name, verdict, source=source)

    async def _run_direct(self, definition: TestDefinition, context: TestContext) -> TestOutcome:
        try:
            await invoke_callback(definition.during, context)
        except Exception as e:
            return TestOutcome(definition.name, Verdict.failing(describe_error(e)), source="direct")
        return TestOutcome(definition.name, Verdict.passing("Direct execution successful"), source="direct")

    async def _run_verdict(self, definition: TestDefinition, channel: ActionChannel) -> Tuple[Verdict, str]:
        if not self.config.cache.enabled:
            return await self._fresh_run(definition, channel, persist=False), "agent"

        fingerprint = definition.fingerprint()
        trace = self.cache.get(fingerprint)
        if trace is None:
            self.logger.info(f"Cache miss for '{definition.name}'")
            return await self._fresh_run(definition, channel, persist=True), "agent"

        self.logger.info(f"Cache hit for '{definition.name}' ({len(trace.steps)} steps)")
        start = await channel.window_info()
        try:
            return await self.replay(trace, channel), "cache"
        except (StaleTraceError, ActionError) as e:
            self.logger.warning(f"Cached trace for '{definition.name}' is stale, running with the model: {e}")

        self.cache.delete(fingerprint)
        await self._reset_window(channel, start.url)
        # Single fallback run; it never consults the cache again.
        return await self._fresh_run(definition, channel, persist=True), "agent"

    async def replay(self, trace: Trace, channel: ActionChannel) -> Verdict:
        """
        Replay cached steps in order, verifying pointer targets against the live UI.

        Raises StaleTraceError on the first fingerprint mismatch. Per-step action
        errors are logged and skipped; if no step could be executed at all the
        last ActionError is raised.
        """
        executed = 0
        last_error: Optional[ActionError] = None
        for index, step in enumerate(trace.steps):
            if step.action.action == BrowserAction.SCREENSHOT:
                continue
            await asyncio.sleep(self.config.cache.settle_delay)
            if step.needs_verification:
                live = await channel.get_ui_fingerprint(*step.target)
                if live != step.ui_fingerprint:
                    raise StaleTraceError(index, expected=step.ui_fingerprint, actual=live)
            try:
                await channel.execute(step.action)
                executed += 1
            except ActionError as e:
                last_error = e
                self.logger.warning(f"Replay step {index} ({step.action.action.value}) failed: {e}")

        if last_error is not None and executed == 0:
            raise last_error
        return Verdict.passing(REPLAYED_REASON)

    async def _fresh_run(self, definition: TestDefinition, channel: ActionChannel, persist: bool) -> Verdict:
        loop = AgentLoop(
            self.model_client,
            channel,
            logger=self.logger,
            screenshot_max_width=self.config.agent.screenshot_max_width,
        )
        budget = definition.max_turns or self.config.agent.max_turns
        try:
            run = await loop.run(definition, budget)
        except AIError as e:
            return Verdict.failing(e.message, usage=e.usage)
        except ActionError as e:
            return Verdict.failing(f"Action failed: {e.message}", usage=e.usage)

        if run.verdict.passed and persist:
            fingerprint = definition.fingerprint()
            try:
                self.cache.set(
                    fingerprint,
                    Trace(test_name=definition.name, fingerprint=fingerprint, steps=run.steps),
                )
            except CacheError as e:
                self.logger.warning(f"Could not cache trace for '{definition.name}': {e}")
        return run.verdict

    async def _reset_window(self, channel: ActionChannel, url: str) -> None:
        if not url or url == "about:blank":
            return
        try:
            await channel.execute(ActionDescriptor(action=BrowserAction.NAVIGATE, url=url))
        except ActionError as e:
            self.logger.warning(f"Could not restore {url} after stale replay: {e}")

    # ─────────────────────────────────────────────────────────────────────────
    # Hooks and helpers
    # ─────────────────────────────────────────────────────────────────────────

    async def _run_hook(self, hook: Optional[Hook], context: TestContext) -> Optional[str]:
        """Run a hook and return its error text, or None on success."""
        if hook is None:
            return None
        try:
            await invoke_callback(hook, context)
        except Exception as e:
            self.logger.warning(f"Hook {getattr(hook, '__name__', hook)!s} failed: {e}")
            return describe_error(e)
        return None

    async def _run_hooks(self, hooks: List[Hook], context: TestContext) -> Optional[str]:
        for hook in hooks:
            error = await self._run_hook(hook, context)
            if error:
                return error
        return None

    def _skipped(self, definition: TestDefinition, reason: str) -> TestOutcome:
        return TestOutcome(definition.name, Verdict.failing(reason), source="skipped")

    async def _close_session(self, session: Any) -> None:
        try:
            await session.close()
        except Exception as e:
            self.logger.warning(f"Failed to close browser session: {e}")

    def clear_cache(self, scope: CacheScope = "project", force_purge: bool = False) -> int:
        return self.cache.clear(scope=scope, force_purge=force_purge)
