from __future__ import annotations

import asyncio
import logging
import queue
import threading
import time
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pydantic import ValidationError

from driftcheck.schemas import (
    ComparisonResult,
    Environment,
    EnvironmentStats,
    RouteInfo,
    RunConfig,
    RunStatus,
    RunSummary,
    TestResult,
)
from driftcheck.services.artifacts import ArtifactStore
from driftcheck.services.differ import Differ
from driftcheck.services.runner import BrowserLauncher, BrowserProcessError, TestRunner
from driftcheck.services.storage import RegressionRepository, get_repository
from driftcheck.services.test_cases import TestCase, build_test_cases

LOGGER = logging.getLogger("driftcheck.orchestrator")


def _utcnow() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%S", time.gmtime())


async def run_visual_regression(
    config: RunConfig,
    tests: Sequence[TestCase],
    *,
    launcher: Optional[BrowserLauncher] = None,
    artifacts: Optional[ArtifactStore] = None,
) -> Tuple[List[TestResult], List[ComparisonResult]]:
    """Run ``tests`` against both environments and compare the captures.

    Screenshots and diffs left in the output root by an earlier run are
    removed first, so numbered series never pair with stale captures.

    Raises ``BrowserProcessError`` when the shared browser cannot be used.
    """
    store = artifacts or ArtifactStore(config.output_dir)
    store.purge()
    runner = TestRunner(config, artifacts=store, launcher=launcher)
    results = await runner.run_tests(tests)

    live_results = [result for result in results if result.environment == Environment.live]
    dev_results = [result for result in results if result.environment == Environment.dev]
    differ = Differ(threshold=config.diff_threshold, artifacts=store)
    comparisons = await differ.compare_results(live_results, dev_results)
    return results, comparisons


def summarize(
    results: Sequence[TestResult],
    comparisons: Sequence[ComparisonResult],
    duration_ms: int = 0,
) -> RunSummary:
    stats: Dict[Environment, EnvironmentStats] = {}
    for environment in (Environment.live, Environment.dev):
        scoped = [result for result in results if result.environment == environment]
        passed = sum(1 for result in scoped if result.passed)
        stats[environment] = EnvironmentStats(total=len(scoped), passed=passed, failed=len(scoped) - passed)
    passed_total = sum(1 for result in results if result.passed)
    return RunSummary(
        total_tests=stats[Environment.live].total,
        passed=passed_total,
        failed=len(results) - passed_total,
        environment_stats=stats,
        comparisons=len(comparisons),
        differences=sum(1 for item in comparisons if item.has_differences),
        duration_ms=duration_ms,
    )


class RunOrchestrator:
    """Queue runs and drive them through the scheduler and the comparator."""

    def __init__(
        self,
        repo: Optional[RegressionRepository] = None,
        *,
        auto_start: bool = True,
        launcher: Optional[BrowserLauncher] = None,
    ) -> None:
        self._repo = repo or get_repository()
        self._launcher = launcher
        self._queue: "queue.Queue[str]" = queue.Queue()
        self._inflight: set[str] = set()
        self._lock = threading.Lock()
        self._worker: Optional[threading.Thread] = None
        if auto_start:
            self._ensure_worker()

    def enqueue(self, run_id: str) -> None:
        with self._lock:
            if run_id in self._inflight:
                return
            self._inflight.add(run_id)
        self._queue.put(run_id)
        self._ensure_worker()

    def execute_now(self, run_id: str) -> None:
        """Execute a run immediately in the current thread (used by tests)."""
        with self._lock:
            self._inflight.add(run_id)
        try:
            self._process_run(run_id)
        finally:
            with self._lock:
                self._inflight.discard(run_id)

    def _ensure_worker(self) -> None:
        if self._worker and self._worker.is_alive():
            return
        self._worker = threading.Thread(target=self._run_loop, daemon=True, name="run-orchestrator")
        self._worker.start()

    def _run_loop(self) -> None:
        while True:
            run_id = self._queue.get()
            try:
                self._process_run(run_id)
            except Exception:
                LOGGER.exception("Unhandled error while processing run %s", run_id)
            finally:
                with self._lock:
                    self._inflight.discard(run_id)
                self._queue.task_done()

    def _fail_run(self, run_id: str, note: str) -> None:
        LOGGER.error("Run %s failed: %s", run_id, note)
        self._repo.update_run(
            run_id,
            {
                "status": RunStatus.failed.value,
                "note": note,
                "completed_at": _utcnow(),
            },
        )

    def _process_run(self, run_id: str) -> None:
        run = self._repo.get_run(run_id)
        if not run:
            LOGGER.warning("Run %s no longer exists; skipping", run_id)
            return

        try:
            config = RunConfig(**self._repo.get_config())
        except ValidationError as exc:
            self._fail_run(run_id, f"Configuration incomplete: {exc.errors()[0].get('msg')}")
            return

        routes = [RouteInfo(**route) for route in run.get("routes", [])]
        tests = build_test_cases(routes)
        if not tests:
            self._fail_run(run_id, "Run has no testable routes.")
            return

        LOGGER.info(
            "Starting run %s: %s tests (live=%s dev=%s)",
            run_id,
            len(tests),
            config.live_url,
            config.dev_url,
        )
        self._repo.update_run(
            run_id,
            {"status": RunStatus.executing.value, "started_at": _utcnow()},
        )

        started = time.monotonic()
        try:
            results, comparisons = asyncio.run(
                run_visual_regression(config, tests, launcher=self._launcher)
            )
        except BrowserProcessError as exc:
            self._fail_run(run_id, f"Browser failure: {exc}")
            return
        except Exception as exc:
            LOGGER.exception("Run %s aborted", run_id)
            self._fail_run(run_id, f"Run aborted: {exc}")
            return

        duration_ms = int((time.monotonic() - started) * 1000)
        summary = summarize(results, comparisons, duration_ms)
        self._repo.update_run(
            run_id,
            {
                "status": RunStatus.finished.value,
                "completed_at": _utcnow(),
                "summary": summary.model_dump(mode="json"),
                "results": [result.model_dump(mode="json") for result in results],
                "comparisons": [item.model_dump(mode="json") for item in comparisons],
            },
        )
        LOGGER.info(
            "Completed run %s: passed=%s failed=%s comparisons=%s differences=%s",
            run_id,
            summary.passed,
            summary.failed,
            summary.comparisons,
            summary.differences,
        )


_orchestrator: Optional[RunOrchestrator] = None


def get_orchestrator() -> RunOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = RunOrchestrator()
    return _orchestrator


def results_for_run(run: Dict[str, Any]) -> List[TestResult]:
    return [TestResult(**item) for item in run.get("results") or []]


def comparisons_for_run(run: Dict[str, Any]) -> List[ComparisonResult]:
    return [ComparisonResult(**item) for item in run.get("comparisons") or []]
