from fastapi import FastAPI
from fastapi.responses import RedirectResponse

from driftcheck.routes import api
from driftcheck.routes import artifacts as artifacts_routes

app = FastAPI(title="driftcheck Visual Regression Service")
app.include_router(api.router)
app.include_router(artifacts_routes.router)


@app.get("/")
async def root() -> RedirectResponse:
    """Redirect visitors to the run log as the primary entry point."""
    return RedirectResponse(url="/api/runs", status_code=303)
