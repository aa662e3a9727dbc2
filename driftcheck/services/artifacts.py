from __future__ import annotations

import shutil
from pathlib import Path
from typing import Optional, Union

from driftcheck.constants import (
    DEFAULT_OUTPUT_DIR,
    DIFF_SUFFIX,
    SCREENSHOT_SUFFIX,
    SERIES_MARKER,
)
from driftcheck.schemas import Environment

PathLike = Union[str, Path]


def _strip_png(path: PathLike) -> str:
    text = str(path)
    if text.endswith(SCREENSHOT_SUFFIX):
        return text[: -len(SCREENSHOT_SUFFIX)]
    return text


def series_screenshot_path(screenshot_path: PathLike, index: int) -> str:
    """Path of the ``index``-th checkpoint derived from a primary screenshot path."""
    if index < 1:
        raise ValueError("Screenshot series indices start at 1.")
    return f"{_strip_png(screenshot_path)}{SERIES_MARKER}{index}{SCREENSHOT_SUFFIX}"


class ArtifactStore:
    """Manage on-disk locations for screenshots and diff artifacts.

    Layout under the output root::

        screenshots/<environment>/<test name>[-screenshot-<n>].png
        diffs/<test name>[-screenshot-<n>]-diff.png
    """

    def __init__(self, root: Optional[PathLike] = None) -> None:
        resolved_root = Path(root) if root is not None else Path.cwd() / DEFAULT_OUTPUT_DIR
        self._root = resolved_root.resolve()

    @property
    def root(self) -> Path:
        return self._root

    def _ensure_dir(self, path: Path) -> Path:
        path.mkdir(parents=True, exist_ok=True)
        return path

    def screenshots_dir(self, environment: Environment) -> Path:
        return self._ensure_dir(self._root / "screenshots" / Environment(environment).value)

    def diffs_dir(self) -> Path:
        return self._ensure_dir(self._root / "diffs")

    def screenshot_path(self, environment: Environment, test_name: str) -> Path:
        return self.screenshots_dir(environment) / f"{test_name}{SCREENSHOT_SUFFIX}"

    def diff_path(self, live_screenshot: PathLike) -> Path:
        stem = Path(_strip_png(live_screenshot)).name
        return self.diffs_dir() / f"{stem}{DIFF_SUFFIX}"

    def purge(self) -> None:
        """Remove every screenshot and diff below the output root."""
        for name in ("screenshots", "diffs"):
            target = self._root / name
            if target.exists():
                shutil.rmtree(target, ignore_errors=True)


_artifact_store: Optional[ArtifactStore] = None


def get_artifact_store(root: Optional[PathLike] = None) -> ArtifactStore:
    global _artifact_store
    if root is not None:
        return ArtifactStore(root)
    if _artifact_store is None:
        _artifact_store = ArtifactStore()
    return _artifact_store
