"""
Report Engine - FastAPI Application

Main entry point for the report consolidation & normalization backend.

Architecture:
- Extraction attempts → ExtractionSelector → consolidated report text
- Scraper payload → ReportNormalizer → NormalizedReport
- NormalizedReport → NormalizedReportStore → raw + normalized tables
- Dispute rounds → RoundService (draft → saved → sent, soft delete)
"""
from contextlib import asynccontextmanager
import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .database import init_db
from .routers import extractions_router, reports_router, rounds_router

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
CORS_ALLOW_ORIGINS = [
    origin.strip() for origin in os.getenv("CORS_ALLOW_ORIGINS", "*").split(",") if origin.strip()
]

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database on startup."""
    init_db()
    yield

# Create FastAPI app
app = FastAPI(
    lifespan=lifespan,
    title="Report Engine",
    description="""
    Report Engine - Credit Report Consolidation & Normalization

    ## Pipeline
    1. **Consolidation**: competing extraction attempts → one report text
    2. **Normalization**: raw scraper payload → canonical report graph
    3. **Persistence**: idempotent upserts keyed on run / account identity
    4. **Rounds**: dispute round lifecycle with soft delete
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(reports_router)
app.include_router(extractions_router)
app.include_router(rounds_router)


@app.get("/")
async def root():
    """Root endpoint - API information."""
    return {
        "name": "Report Engine",
        "version": "1.0.0",
        "docs": "/docs",
        "components": {
            "consolidation": "/extractions",
            "normalization": "/credit-reports",
            "rounds": "/rounds",
        }
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": "1.0.0"}


# For running with: python -m report_engine.main
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
