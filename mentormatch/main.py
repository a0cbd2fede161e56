"""
MentorMatch - Main Application

FastAPI backend for the student/supervisor matching workflow:
- Applications and their review state machine
- Student partnerships and supervisor co-supervision
- Capacity accounting and project lifecycle
- MongoDB (replica set) as the document store
- JWT bearer tokens issued by the identity service

Run: uvicorn mentormatch.main:app --reload
"""

import logging

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from mentormatch.api.deps import get_store
from mentormatch.api.routes import api_router
from mentormatch.core.config import get_settings
from mentormatch.db.mongodb import init_mongo_indexes
from mentormatch.db.store import DocumentStore

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="MentorMatch",
    description="""
    Matching and partnership workflow engine for final-year projects.

    ## Features
    - **Applications**: submit, review, request revision, resubmit, withdraw
    - **Partnerships**: pair up with another student before applying
    - **Co-supervision**: supervisors share a project, gated by capacity
    - **Projects**: pending_approval -> approved -> in_progress -> completed
    - **Admin**: capacity overrides and batched maintenance jobs
    """,
    version="1.0.0",
    debug=settings.debug,
    docs_url="/docs",
    redoc_url="/redoc"
)

# CORS middleware (allow all for development)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(api_router, prefix="/api")


# Startup event
@app.on_event("startup")
async def startup_event():
    """Initialize MongoDB indexes on startup."""
    try:
        init_mongo_indexes()
        logger.info("MongoDB indexes initialized")
    except Exception:
        logger.exception("MongoDB index initialization failed")


@app.get("/", tags=["Health"])
async def root():
    return {"status": "running", "app": "MentorMatch", "docs": "/docs"}


@app.get("/health", tags=["Health"])
async def health_check(store: DocumentStore = Depends(get_store)):
    """Detailed health check."""
    connected = store.ping()
    return {
        "status": "healthy" if connected else "degraded",
        "document_store": "connected" if connected else "disconnected",
    }
