from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncContextManager, AsyncIterator, Callable, List, Optional, Sequence, Tuple

from playwright.async_api import async_playwright

from driftcheck.schemas import Environment, RunConfig, TestResult
from driftcheck.services.artifacts import ArtifactStore
from driftcheck.services.test_cases import StepTracker, TestCase, build_url

LOGGER = logging.getLogger("driftcheck.runner")

CHROMIUM_ARGS = ["--disable-dev-shm-usage", "--no-sandbox"]

BrowserLauncher = Callable[[], AsyncContextManager[Any]]


class BrowserProcessError(RuntimeError):
    """The shared browser could not be launched or went away mid-run."""


@asynccontextmanager
async def launch_chromium(headless: bool = True) -> AsyncIterator[Any]:
    async with async_playwright() as playwright:
        try:
            browser = await playwright.chromium.launch(headless=headless, args=CHROMIUM_ARGS)
        except Exception as exc:
            raise BrowserProcessError(f"Failed to launch chromium: {exc}") from exc
        LOGGER.info("Launched chromium browser (headless=%s)", headless)
        try:
            yield browser
        finally:
            await browser.close()
            LOGGER.info("Closed chromium browser")


def chunk_tests(tests: Sequence[TestCase], size: int) -> List[List[TestCase]]:
    if size < 1:
        raise ValueError("Chunk size must be a positive integer.")
    return [list(tests[index : index + size]) for index in range(0, len(tests), size)]


def _error_message(exc: BaseException) -> str:
    message = str(exc).strip()
    return message or exc.__class__.__name__


class TestRunner:
    """Run every test case against the live and then the dev environment."""

    __test__ = False

    def __init__(
        self,
        config: RunConfig,
        *,
        artifacts: Optional[ArtifactStore] = None,
        launcher: Optional[BrowserLauncher] = None,
    ) -> None:
        self._config = config
        self._artifacts = artifacts or ArtifactStore(config.output_dir)
        self._launcher = launcher or launch_chromium
        self._browser: Any = None

    async def run_tests(self, tests: Sequence[TestCase]) -> List[TestResult]:
        results: List[TestResult] = []
        async with self._launcher() as browser:
            self._browser = browser
            try:
                for environment in (Environment.live, Environment.dev):
                    LOGGER.info("Testing %s environment (%s tests)", environment.value, len(tests))
                    results.extend(await self._run_environment(tests, environment))
            finally:
                self._browser = None
        return results

    async def _run_environment(
        self, tests: Sequence[TestCase], environment: Environment
    ) -> List[TestResult]:
        base_url = self._config.base_url(environment)
        self._artifacts.screenshots_dir(environment)
        results: List[TestResult] = []

        if self._config.parallel and self._config.max_concurrency:
            chunks = chunk_tests(tests, self._config.max_concurrency)
            for position, chunk in enumerate(chunks, 1):
                LOGGER.debug(
                    "Dispatching %s chunk %s/%s (%s tests)",
                    environment.value,
                    position,
                    len(chunks),
                    len(chunk),
                )
                chunk_results = await asyncio.gather(
                    *(self._run_single_test(test, environment, base_url) for test in chunk)
                )
                results.extend(chunk_results)
        else:
            for test in tests:
                results.append(await self._run_single_test(test, environment, base_url))
        return results

    @asynccontextmanager
    async def _isolated_page(self) -> AsyncIterator[Tuple[Any, Any]]:
        if self._browser is None:
            raise BrowserProcessError("Browser not initialized")
        viewport = self._config.viewport
        context = await self._browser.new_context(
            viewport={"width": viewport.width, "height": viewport.height}
        )
        try:
            context.set_default_navigation_timeout(self._config.navigation_timeout_ms)
            page = await context.new_page()
            yield context, page
        finally:
            await context.close()

    async def _run_single_test(
        self,
        test: TestCase,
        environment: Environment,
        base_url: str,
    ) -> TestResult:
        started = time.monotonic()
        screenshot_path = str(self._artifacts.screenshot_path(environment, test.name))
        url = build_url(base_url, test.route, test.router_type)
        steps = StepTracker()
        failure: Optional[BaseException] = None

        try:
            async with self._isolated_page() as (_context, page):
                try:
                    await test.body(page, base_url, screenshot_path, steps)
                except Exception as exc:
                    failure = exc
                    steps.mark_current_step_failed(_error_message(exc))
                    await self._capture_after_failure(page, screenshot_path, test.name)
        except Exception as exc:
            failure = failure or exc

        if failure is not None and not self._browser_alive():
            raise BrowserProcessError(
                f"Browser disconnected while running {test.name}: {_error_message(failure)}"
            ) from failure

        error = _error_message(failure) if failure is not None else None
        duration = int((time.monotonic() - started) * 1000)
        if error is None:
            LOGGER.debug("[%s] %s passed in %sms", environment.value, test.name, duration)
        else:
            LOGGER.warning("[%s] %s failed after %sms: %s", environment.value, test.name, duration, error)
        return TestResult(
            route=test.route,
            url=url,
            environment=environment,
            passed=error is None,
            screenshot=screenshot_path,
            duration=duration,
            error=error,
            steps=steps.get_steps(),
        )

    def _browser_alive(self) -> bool:
        return self._browser is not None and self._browser.is_connected()

    @staticmethod
    async def _capture_after_failure(page: Any, screenshot_path: str, test_name: str) -> None:
        try:
            await page.screenshot(path=screenshot_path, full_page=True)
        except Exception as exc:
            LOGGER.debug("Recovery screenshot for %s failed: %s", test_name, exc)
