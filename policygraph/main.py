"""
Main FastAPI application entry point.
"""

from fastapi import FastAPI, Depends, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from policygraph.db import initialize_database
from policygraph.deps import get_graph
from policygraph.errors import SyncError
from policygraph.graph.base import GraphStore
from policygraph.graphdb import initialize_graph_store, close_graph_store
from policygraph.routers import customers, policies, claims, records, sync
from policygraph.middleware import PerformanceMiddleware
from policygraph.schemas import ErrorResponse
from policygraph.cache import config_cache
import logging

logger = logging.getLogger("policygraph")

app = FastAPI(
    title="Policy Graph API",
    description="Insurance records API with a graph projection of customers, policies, agents and claims",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(PerformanceMiddleware)

# Add CORS middleware (outermost)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def startup_event():
    """Initialize both stores and load the sync policy on startup."""
    logger.info("Starting Policy Graph API...")

    initialize_database()
    logger.info("Database initialized")

    initialize_graph_store()

    # Fails fast on an invalid policy table
    policy_table = config_cache.get_sync_policy()
    logger.info(
        "Sync policy loaded | " +
        " | ".join(f"{kind}={action}" for kind, action in sorted(policy_table.items()))
    )

    logger.info("Startup complete")


@app.on_event("shutdown")
async def shutdown_event():
    close_graph_store()


@app.exception_handler(SyncError)
async def sync_error_handler(request: Request, exc: SyncError):
    """Return the stable error code of a domain error."""
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies are reported as invalid_payload."""
    fields = sorted({".".join(str(part) for part in error["loc"][1:]) for error in exc.errors()})
    error = ErrorResponse(error="invalid_payload", detail=f"Invalid fields: {', '.join(fields)}")
    return JSONResponse(status_code=400, content=error.model_dump())


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"message": "Policy Graph API", "status": "healthy"}


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": "1.0.0"}


@app.get("/graph/health")
async def graph_health(graph: GraphStore = Depends(get_graph)):
    """Graph store reachability."""
    if graph.ping():
        return {"ok": True}
    return JSONResponse(status_code=503, content={"ok": False, "error": "graph_unavailable"})


# Include all routers
app.include_router(customers.router, prefix="/v1", tags=["customers"])
app.include_router(policies.router, prefix="/v1", tags=["policies"])
app.include_router(claims.router, prefix="/v1", tags=["claims"])
app.include_router(records.router, prefix="/v1", tags=["agents", "vehicles"])
app.include_router(sync.router, prefix="/v1", tags=["sync"])

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
