from __future__ import annotations

import json
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import Depends

from driftcheck.constants import (
    DEFAULT_DIFF_THRESHOLD,
    DEFAULT_MAX_CONCURRENCY,
    DEFAULT_OUTPUT_DIR,
    DEFAULT_VIEWPORT,
    MAX_CONCURRENCY_LIMIT,
    NAVIGATION_TIMEOUT_MS,
)

STATE_VERSION = 1


def _utcnow() -> str:
    """Return timezone-aware ISO timestamp."""
    return datetime.now(tz=timezone.utc).isoformat()


def _default_config() -> Dict[str, Any]:
    return {
        "live_url": "",
        "dev_url": "",
        "output_dir": DEFAULT_OUTPUT_DIR,
        "viewport": dict(DEFAULT_VIEWPORT),
        "parallel": True,
        "max_concurrency": DEFAULT_MAX_CONCURRENCY,
        "diff_threshold": DEFAULT_DIFF_THRESHOLD,
        "navigation_timeout_ms": NAVIGATION_TIMEOUT_MS,
    }


def _default_state() -> Dict[str, Any]:
    return {
        "version": STATE_VERSION,
        "runs": {},
        "config": _default_config(),
    }


def _default_summary() -> Dict[str, Any]:
    return {
        "total_tests": 0,
        "passed": 0,
        "failed": 0,
        "environment_stats": {},
        "comparisons": 0,
        "differences": 0,
        "duration_ms": 0,
    }


class LocalJsonStorage:
    """Very small document store backed by a JSON file.

    Each top-level collection stores items keyed by their primary identifier.
    All writes are synchronised via an internal lock and flushed immediately.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._lock = threading.Lock()
        self._state = self._load()

    def _load(self) -> Dict[str, Any]:
        if not self._path.exists():
            return _default_state()
        with self._path.open("r", encoding="utf-8") as handle:
            state = json.load(handle)
        state.setdefault("runs", {})
        config = state.setdefault("config", _default_config())
        for key, value in _default_config().items():
            config.setdefault(key, value)
        for run in state["runs"].values():
            summary = run.setdefault("summary", {})
            for key, value in _default_summary().items():
                summary.setdefault(key, value)
        return state

    def _persist(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._path.open("w", encoding="utf-8") as handle:
            json.dump(self._state, handle, indent=2, sort_keys=True)

    def _collection(self, name: str) -> Dict[str, Any]:
        return self._state.setdefault(name, {})

    def get_config(self) -> Dict[str, Any]:
        return self._state.setdefault("config", _default_config())

    def update_config(self, values: Dict[str, Any]) -> Dict[str, Any]:
        with self._lock:
            config = self.get_config()
            for key, value in values.items():
                if value is not None:
                    config[key] = value
            self._persist()
            return config

    def upsert(self, collection: str, item_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        with self._lock:
            self._collection(collection)[item_id] = payload
            self._persist()
            return payload

    def get(self, collection: str, item_id: str) -> Optional[Dict[str, Any]]:
        return self._collection(collection).get(item_id)

    def delete(self, collection: str, item_id: str) -> None:
        with self._lock:
            if item_id in self._collection(collection):
                del self._collection(collection)[item_id]
                self._persist()

    def list(self, collection: str) -> List[Dict[str, Any]]:
        return list(self._collection(collection).values())


class RegressionRepository:
    """Repository offering domain-focused helpers on top of LocalJsonStorage."""

    def __init__(self, storage: LocalJsonStorage) -> None:
        self._storage = storage

    # -- Config -------------------------------------------------------------------
    def get_config(self) -> Dict[str, Any]:
        config = self._storage.get_config()
        viewport = config.get("viewport") or DEFAULT_VIEWPORT
        return {
            "live_url": config.get("live_url", ""),
            "dev_url": config.get("dev_url", ""),
            "output_dir": config.get("output_dir", DEFAULT_OUTPUT_DIR),
            "viewport": {"width": int(viewport["width"]), "height": int(viewport["height"])},
            "parallel": bool(config.get("parallel", True)),
            "max_concurrency": int(config.get("max_concurrency", DEFAULT_MAX_CONCURRENCY)),
            "diff_threshold": float(config.get("diff_threshold", DEFAULT_DIFF_THRESHOLD)),
            "navigation_timeout_ms": int(config.get("navigation_timeout_ms", NAVIGATION_TIMEOUT_MS)),
        }

    def update_config(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        values = {key: value for key, value in payload.items() if value is not None}
        for key in ("live_url", "dev_url", "output_dir"):
            if key in values:
                cleaned = str(values[key]).strip()
                if not cleaned:
                    raise ValueError(f"{key} cannot be blank.")
                values[key] = cleaned.rstrip("/") if key != "output_dir" else cleaned
        if "max_concurrency" in values:
            workers = int(values["max_concurrency"])
            if workers <= 0:
                raise ValueError("Maximum concurrency must be a positive integer.")
            if workers > MAX_CONCURRENCY_LIMIT:
                raise ValueError(
                    f"Maximum concurrency cannot exceed {MAX_CONCURRENCY_LIMIT} in this environment."
                )
        if "diff_threshold" in values and not 0 <= float(values["diff_threshold"]) <= 1:
            raise ValueError("Diff threshold must be between 0 and 1.")
        self._storage.update_config(values)
        return self.get_config()

    # -- Runs ---------------------------------------------------------------------
    def list_runs(self) -> List[Dict[str, Any]]:
        return sorted(self._storage.list("runs"), key=lambda it: it["created_at"], reverse=True)

    def get_run(self, run_id: str) -> Optional[Dict[str, Any]]:
        return self._storage.get("runs", run_id)

    def create_run(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        now = _utcnow()
        run_id = str(uuid.uuid4())
        record = {
            "id": run_id,
            "status": payload.get("status", "queued"),
            "routes": list(payload["routes"]),
            "note": payload.get("note"),
            "summary": payload.get("summary") or _default_summary(),
            "results": [],
            "comparisons": [],
            "created_at": now,
            "updated_at": now,
            "started_at": None,
            "completed_at": None,
        }
        return self._storage.upsert("runs", run_id, record)

    def update_run(self, run_id: str, payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        record = self.get_run(run_id)
        if not record:
            return None
        record.update({k: v for k, v in payload.items() if v is not None})
        record["updated_at"] = _utcnow()
        return self._storage.upsert("runs", run_id, record)

    def delete_run(self, run_id: str) -> None:
        self._storage.delete("runs", run_id)


_repository: Optional[RegressionRepository] = None


def get_repository() -> RegressionRepository:
    """FastAPI dependency to retrieve the singleton repository instance."""
    global _repository
    if _repository is None:
        storage_path = Path("driftcheck.db.json")
        backend = LocalJsonStorage(storage_path)
        _repository = RegressionRepository(backend)
    return _repository


RepositoryDep = Depends(get_repository)
