"""Taskboard Core FastAPI application."""
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..config import get_settings
from ..errors import TaskboardError
from .routers import invitations, organizations, projects, tasks

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("taskboard-core")

logger.info("Starting Taskboard Core API")

# Create FastAPI app
app = FastAPI(
    title="Taskboard Core API",
    description="Organizations, projects, boards and tasks",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(TaskboardError)
async def taskboard_error_handler(request: Request, exc: TaskboardError):
    """Map service failures to their stable (kind, message) JSON body."""
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"success": False, "kind": "internal_error", "message": "Internal server error"},
    )


# Include all business logic routers with /api/v1 prefix
app.include_router(organizations.router, prefix="/api/v1/organizations")
app.include_router(projects.router, prefix="/api/v1/projects")
app.include_router(tasks.router, prefix="/api/v1/tasks")
app.include_router(invitations.router, prefix="/api/v1/invitations")


@app.get("/")
def root():
    """Root endpoint with server info."""
    return {
        "name": "Taskboard Core API",
        "version": "1.0.0",
        "docs": "/docs",
    }


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
