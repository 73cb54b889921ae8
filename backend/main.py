# backend/main.py
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from config.tracestore_config import load_config
from db import dispose_engine, init_engine
from routes.traces import router as traces_router
from services.auth import validate_auth_config_on_startup

app = FastAPI(title="Pubsub Trace Store")
app.include_router(traces_router)


@app.middleware("http")
async def limit_trace_body(request: Request, call_next):
    """
    Bound POST /traces bodies before FastAPI reads and parses them.

    The event count limit in the route only applies after parsing; this one
    keeps oversized requests out of memory. Bodies without Content-Length
    cannot be bounded up front and are refused.
    """
    if request.method != "POST" or request.url.path.rstrip("/") != traces_router.prefix:
        return await call_next(request)

    max_bytes = load_config().ingest_max_body_bytes()
    length = request.headers.get("content-length")
    if length is None:
        return JSONResponse(status_code=411, content={"detail": "Content-Length required"})
    if not length.isdigit():
        return JSONResponse(status_code=400, content={"detail": "invalid Content-Length"})
    if int(length) > max_bytes:
        return JSONResponse(
            status_code=413,
            content={"detail": f"request body larger than {max_bytes} bytes"},
        )
    return await call_next(request)


@app.get("/health")
def health():
    return {"status": "ok"}


@app.on_event("startup")
def on_startup():
    validate_auth_config_on_startup()
    # connect + ensure schema; failures abort startup
    init_engine(ensure=load_config().schema_on_startup())


@app.on_event("shutdown")
def on_shutdown():
    dispose_engine()
