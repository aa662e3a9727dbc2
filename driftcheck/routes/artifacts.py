from __future__ import annotations

from fastapi import APIRouter, HTTPException
from fastapi.responses import FileResponse

from driftcheck.services.artifacts import get_artifact_store
from driftcheck.services.storage import RegressionRepository, RepositoryDep

router = APIRouter(tags=["artifacts"])


@router.get("/artifacts/{artifact_path:path}")
async def read_artifact(
    artifact_path: str, repo: RegressionRepository = RepositoryDep
) -> FileResponse:
    store = get_artifact_store(repo.get_config()["output_dir"])
    root = store.root
    target = (root / artifact_path).resolve()

    if not target.is_relative_to(root):
        raise HTTPException(status_code=404, detail="Artifact not found")
    if not target.exists() or not target.is_file():
        raise HTTPException(status_code=404, detail="Artifact not found")

    return FileResponse(path=target)
