from __future__ import annotations

DEFAULT_OUTPUT_DIR = "driftcheck-results"
DEFAULT_VIEWPORT = {"width": 1920, "height": 1080}
DEFAULT_MAX_CONCURRENCY = 5
MAX_CONCURRENCY_LIMIT = 32
NAVIGATION_TIMEOUT_MS = 30000
SETTLE_DELAY_MS = 1000

# Per-pixel colour delta handed to pixelmatch (0 = exact, 1 = lenient).
DEFAULT_DIFF_THRESHOLD = 0.1
# Share of differing pixels (in percent) above which a pair is flagged.
DIFF_EPSILON_PERCENT = 0.01
MISSING_ARTIFACT_PERCENT = 100.0

SCREENSHOT_SUFFIX = ".png"
SERIES_MARKER = "-screenshot-"
DIFF_SUFFIX = "-diff.png"
