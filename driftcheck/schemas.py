from __future__ import annotations

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from driftcheck.constants import (
    DEFAULT_DIFF_THRESHOLD,
    DEFAULT_MAX_CONCURRENCY,
    DEFAULT_OUTPUT_DIR,
    MAX_CONCURRENCY_LIMIT,
    NAVIGATION_TIMEOUT_MS,
)


class Environment(str, Enum):
    live = "live"
    dev = "dev"


class RouterType(str, Enum):
    hash = "hash"
    browser = "browser"


class RouteKind(str, Enum):
    static = "static"
    dynamic = "dynamic"


class RunStatus(str, Enum):
    queued = "queued"
    executing = "executing"
    finished = "finished"
    failed = "failed"


class Viewport(BaseModel):
    width: int = 1920
    height: int = 1080

    @field_validator("width", "height")
    @classmethod
    def validate_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("Viewport dimensions must be positive integers.")
        return value


class RunConfig(BaseModel):
    """Everything the scheduler and comparator need for one run."""

    live_url: str
    dev_url: str
    output_dir: str = DEFAULT_OUTPUT_DIR
    viewport: Viewport = Field(default_factory=Viewport)
    parallel: bool = True
    max_concurrency: Optional[int] = Field(
        default=DEFAULT_MAX_CONCURRENCY, ge=1, le=MAX_CONCURRENCY_LIMIT
    )
    diff_threshold: float = Field(default=DEFAULT_DIFF_THRESHOLD, ge=0, le=1)
    navigation_timeout_ms: int = Field(default=NAVIGATION_TIMEOUT_MS, ge=1)

    @field_validator("live_url", "dev_url")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        cleaned = value.strip().rstrip("/")
        if not cleaned:
            raise ValueError("Environment base URLs cannot be blank.")
        return cleaned

    def base_url(self, environment: Environment) -> str:
        return self.live_url if environment == Environment.live else self.dev_url


class ConfigUpdate(BaseModel):
    live_url: Optional[str] = None
    dev_url: Optional[str] = None
    output_dir: Optional[str] = None
    viewport: Optional[Viewport] = None
    parallel: Optional[bool] = None
    max_concurrency: Optional[int] = Field(default=None, ge=1, le=MAX_CONCURRENCY_LIMIT)
    diff_threshold: Optional[float] = Field(default=None, ge=0, le=1)
    navigation_timeout_ms: Optional[int] = Field(default=None, ge=1)


class TestStep(BaseModel):
    __test__ = False

    title: str
    duration: int
    error: Optional[str] = None


class TestResult(BaseModel):
    __test__ = False

    route: str
    url: str
    environment: Environment
    passed: bool
    screenshot: str
    duration: int
    error: Optional[str] = None
    steps: List[TestStep] = Field(default_factory=list)

    model_config = {"frozen": True}


class ComparisonResult(BaseModel):
    route: str
    live_screenshot: str
    dev_screenshot: str
    diff_screenshot: Optional[str] = None
    diff_percentage: float
    has_differences: bool

    model_config = {"frozen": True}


class RouteInfo(BaseModel):
    path: str
    type: RouteKind = RouteKind.static
    router_type: Optional[RouterType] = None

    @field_validator("path")
    @classmethod
    def validate_path(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned.startswith("/"):
            raise ValueError("Route paths must start with '/'.")
        return cleaned


class EnvironmentStats(BaseModel):
    total: int = 0
    passed: int = 0
    failed: int = 0


class RunSummary(BaseModel):
    total_tests: int = 0
    passed: int = 0
    failed: int = 0
    environment_stats: Dict[Environment, EnvironmentStats] = Field(default_factory=dict)
    comparisons: int = 0
    differences: int = 0
    duration_ms: int = 0


class RunCreate(BaseModel):
    routes: List[RouteInfo] = Field(..., min_length=1)
    note: Optional[str] = None


class Run(BaseModel):
    id: str
    status: RunStatus = RunStatus.queued
    routes: List[RouteInfo]
    note: Optional[str] = None
    summary: RunSummary = Field(default_factory=RunSummary)
    created_at: str
    updated_at: str
    started_at: Optional[str] = None
    completed_at: Optional[str] = None

    model_config = {"from_attributes": True}
