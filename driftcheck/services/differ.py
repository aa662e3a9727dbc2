from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from PIL import Image
from pixelmatch.contrib.PIL import pixelmatch

from driftcheck.constants import (
    DEFAULT_DIFF_THRESHOLD,
    DIFF_EPSILON_PERCENT,
    MISSING_ARTIFACT_PERCENT,
)
from driftcheck.schemas import ComparisonResult, TestResult
from driftcheck.services.artifacts import ArtifactStore, series_screenshot_path

LOGGER = logging.getLogger("driftcheck.differ")


@dataclass(frozen=True)
class ScreenshotPair:
    live: str
    dev: str
    index: Optional[int] = None


def _route_label(route: str, index: Optional[int]) -> str:
    return f"{route} (screenshot {index})" if index else route


def _load_rgba(path: str) -> Image.Image:
    with Image.open(path) as img:
        return img.convert("RGBA")


def find_screenshot_pairs(live: TestResult, dev: TestResult) -> List[ScreenshotPair]:
    """Resolve the screenshot pairs to compare for one route.

    Numbered checkpoints (``<name>-screenshot-<n>.png``) win over the primary
    screenshot. The search stops at the first index neither environment has.
    """
    pairs: List[ScreenshotPair] = []
    index = 1
    while True:
        live_path = series_screenshot_path(live.screenshot, index)
        dev_path = series_screenshot_path(dev.screenshot, index)
        if not Path(live_path).exists() and not Path(dev_path).exists():
            break
        pairs.append(ScreenshotPair(live=live_path, dev=dev_path, index=index))
        index += 1

    if not pairs:
        pairs.append(ScreenshotPair(live=live.screenshot, dev=dev.screenshot))
    return pairs


class Differ:
    """Pair live/dev screenshots by route and classify the visual drift."""

    def __init__(
        self,
        output_dir: Optional[str] = None,
        threshold: float = DEFAULT_DIFF_THRESHOLD,
        *,
        artifacts: Optional[ArtifactStore] = None,
    ) -> None:
        if artifacts is None and output_dir is None:
            raise ValueError("Differ requires an output directory or an artifact store.")
        self._artifacts = artifacts or ArtifactStore(output_dir)
        self._threshold = threshold

    async def compare_results(
        self,
        live_results: Sequence[TestResult],
        dev_results: Sequence[TestResult],
    ) -> List[ComparisonResult]:
        self._artifacts.diffs_dir()
        dev_by_route: Dict[str, TestResult] = {result.route: result for result in dev_results}
        comparisons: List[ComparisonResult] = []

        for live_result in live_results:
            dev_result = dev_by_route.get(live_result.route)
            if dev_result is None:
                LOGGER.debug("No dev result for route %s; skipping comparison", live_result.route)
                continue
            pairs = await asyncio.to_thread(find_screenshot_pairs, live_result, dev_result)
            for pair in pairs:
                comparison = await asyncio.to_thread(self.compare_screenshot_files, live_result.route, pair)
                comparisons.append(comparison)

        LOGGER.info(
            "Compared %s screenshot pairs (%s with differences)",
            len(comparisons),
            sum(1 for item in comparisons if item.has_differences),
        )
        return comparisons

    def compare_screenshot_files(self, route: str, pair: ScreenshotPair) -> ComparisonResult:
        label = _route_label(route, pair.index)
        target = self._artifacts.diff_path(pair.live)
        # A diff file on disk always belongs to the current verdict.
        target.unlink(missing_ok=True)
        if not Path(pair.live).exists() or not Path(pair.dev).exists():
            LOGGER.warning("Screenshot missing for %s (live=%s dev=%s)", label, pair.live, pair.dev)
            return self._mismatch(label, pair)

        try:
            percentage, diff_image = self._diff_images(pair.live, pair.dev)
            has_differences = percentage > DIFF_EPSILON_PERCENT
            diff_path: Optional[str] = None
            if has_differences and diff_image is not None:
                diff_image.save(target)
                diff_path = str(target)
        except Exception as exc:
            LOGGER.warning("Comparison failed for %s: %s", label, exc)
            target.unlink(missing_ok=True)
            return self._mismatch(label, pair)

        return ComparisonResult(
            route=label,
            live_screenshot=pair.live,
            dev_screenshot=pair.dev,
            diff_screenshot=diff_path,
            diff_percentage=percentage,
            has_differences=has_differences,
        )

    def _diff_images(self, live_path: str, dev_path: str) -> Tuple[float, Optional[Image.Image]]:
        live_img = _load_rgba(live_path)
        dev_img = _load_rgba(dev_path)
        if live_img.size != dev_img.size:
            width = min(live_img.width, dev_img.width)
            height = min(live_img.height, dev_img.height)
            LOGGER.debug(
                "Size mismatch %s vs %s; comparing %sx%s intersection",
                live_img.size,
                dev_img.size,
                width,
                height,
            )
            live_img = live_img.crop((0, 0, width, height))
            dev_img = dev_img.crop((0, 0, width, height))

        total_pixels = live_img.width * live_img.height
        if total_pixels == 0:
            return 0.0, None

        diff_img = Image.new("RGBA", live_img.size)
        diff_pixels = pixelmatch(live_img, dev_img, diff_img, threshold=self._threshold)
        percentage = round(diff_pixels / total_pixels * 100.0, 2)
        return percentage, diff_img

    @staticmethod
    def _mismatch(label: str, pair: ScreenshotPair) -> ComparisonResult:
        return ComparisonResult(
            route=label,
            live_screenshot=pair.live,
            dev_screenshot=pair.dev,
            diff_percentage=MISSING_ARTIFACT_PERCENT,
            has_differences=True,
        )
