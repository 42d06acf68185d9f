import logging
import os

import uvicorn
from fastapi import Depends, FastAPI, Header, HTTPException, Response
from pydantic import BaseModel

from . import config
from .db import init_db
from .demo_content import setup_demo_content
from .destinations.base import available_destinations
from .errors import UnknownDestination
from .job import cancel_import, start_import
from .progress import get_progress_store, poll_progress

app = FastAPI(title="Analytics Demo Data Importer")

LOG = logging.getLogger("demoseed.admin")


class ImportRequest(BaseModel):
    time_range: int = config.DEFAULT_TIME_RANGE
    batch_size: int = config.DEFAULT_BATCH_SIZE
    sleep: int = config.DEFAULT_SLEEP
    destination: str = config.DEFAULT_DESTINATION


@app.on_event("startup")
async def startup_event():
    init_db()


@app.get("/health")
async def health():
    return {"status": "ok"}


async def admin_auth(authorization: str = Header(None), x_admin_token: str = Header(None, alias="X-Admin-Token")):
    """Require ADMIN_API_TOKEN if set; accept either Bearer token in Authorization header
    or the `X-Admin-Token` header. If `ADMIN_API_TOKEN` is not set, authentication is a no-op.
    """
    token = os.getenv("ADMIN_API_TOKEN")
    if not token:
        LOG.debug("admin auth: no ADMIN_API_TOKEN configured; allowing open access")
        return True

    if x_admin_token and x_admin_token == token:
        return True

    if not authorization:
        LOG.warning("admin auth failed: missing token")
        raise HTTPException(status_code=401, detail="missing admin token")

    scheme, _, cred = authorization.partition(" ")
    if scheme.lower() != "bearer" or cred != token:
        LOG.warning("admin auth failed: invalid token provided (scheme=%s)", scheme)
        raise HTTPException(status_code=401, detail="invalid admin token")

    return True


@app.get("/metrics")
async def metrics_endpoint():
    from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.get("/destinations")
async def destinations(auth=Depends(admin_auth)):
    return {"destinations": available_destinations()}


@app.post("/demo-content")
async def demo_content(auth=Depends(admin_auth)):
    return setup_demo_content(config.get_home_url())


@app.post("/import", status_code=202)
async def trigger_import(req: ImportRequest, auth=Depends(admin_auth)):
    if req.time_range not in config.TIME_RANGES:
        raise HTTPException(status_code=422, detail=f"time_range must be one of {list(config.TIME_RANGES)}")
    if req.batch_size < 1 or req.sleep < 0:
        raise HTTPException(status_code=422, detail="batch_size must be positive and sleep non-negative")
    try:
        task = start_import(req.time_range, req.batch_size, req.sleep, req.destination)
    except UnknownDestination as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"scheduled": task is not None, "destination": req.destination}


@app.get("/import/{destination}/progress")
async def import_progress(destination: str, auth=Depends(admin_auth)):
    result = poll_progress(get_progress_store(), destination)
    if not result["success"]:
        raise HTTPException(status_code=500, detail=result["message"])
    return result


@app.get("/import/{destination}")
async def import_state(destination: str, auth=Depends(admin_auth)):
    return get_progress_store().get(destination).to_dict()


@app.post("/import/{destination}/cancel")
async def import_cancel(destination: str, auth=Depends(admin_auth)):
    return {"cancelled": cancel_import(destination)}


if __name__ == "__main__":
    # Allow `python -m demoseed.main` for quick local runs
    uvicorn.run("demoseed.main:app", host="0.0.0.0", port=int(os.getenv("PORT", 8000)), log_level="info")
