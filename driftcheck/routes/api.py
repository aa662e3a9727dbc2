from __future__ import annotations

from typing import Any, Dict, List

from fastapi import APIRouter, HTTPException

from driftcheck.schemas import ComparisonResult, ConfigUpdate, Run, RunCreate, TestResult
from driftcheck.services.orchestrator import (
    comparisons_for_run,
    get_orchestrator,
    results_for_run,
)
from driftcheck.services.storage import RegressionRepository, RepositoryDep

router = APIRouter(prefix="/api", tags=["api"])


def _require_run(repo: RegressionRepository, run_id: str) -> Dict[str, Any]:
    record = repo.get_run(run_id)
    if not record:
        raise HTTPException(status_code=404, detail="Run not found")
    return record


# Config --------------------------------------------------------------------------
@router.get("/config")
async def get_config(repo: RegressionRepository = RepositoryDep) -> Dict[str, Any]:
    return repo.get_config()


@router.patch("/config")
async def update_config(
    payload: ConfigUpdate, repo: RegressionRepository = RepositoryDep
) -> Dict[str, Any]:
    try:
        return repo.update_config(payload.model_dump(exclude_unset=True))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


# Runs ----------------------------------------------------------------------------
@router.get("/runs", response_model=List[Run])
async def list_runs(repo: RegressionRepository = RepositoryDep) -> List[Run]:
    return repo.list_runs()


@router.post("/runs", response_model=Run, status_code=201)
async def create_run(payload: RunCreate, repo: RegressionRepository = RepositoryDep) -> Run:
    config = repo.get_config()
    if not config.get("live_url") or not config.get("dev_url"):
        raise HTTPException(
            status_code=400,
            detail="Configure both live_url and dev_url before starting a run.",
        )
    record = repo.create_run(payload.model_dump(mode="json"))
    orchestrator = get_orchestrator()
    orchestrator.enqueue(record["id"])
    return record


@router.get("/runs/{run_id}", response_model=Run)
async def get_run(run_id: str, repo: RegressionRepository = RepositoryDep) -> Run:
    return _require_run(repo, run_id)


@router.delete("/runs/{run_id}", status_code=204)
async def delete_run(run_id: str, repo: RegressionRepository = RepositoryDep) -> None:
    repo.delete_run(run_id)


@router.get("/runs/{run_id}/results", response_model=List[TestResult])
async def list_run_results(run_id: str, repo: RegressionRepository = RepositoryDep) -> List[TestResult]:
    return results_for_run(_require_run(repo, run_id))


@router.get("/runs/{run_id}/comparisons", response_model=List[ComparisonResult])
async def list_run_comparisons(
    run_id: str, repo: RegressionRepository = RepositoryDep
) -> List[ComparisonResult]:
    return comparisons_for_run(_require_run(repo, run_id))


@router.get("/orchestrator/ping")
async def orchestrator_ping() -> Dict[str, str]:
    return {"status": "ok"}
