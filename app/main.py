"""Main FastAPI application entry point."""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app import config
from app.database import init_db
from app.api.routes import router
from app.logging_config import setup_logging

setup_logging()

init_db()

# Create FastAPI app
app = FastAPI(
    title="Visa Application Tracker",
    description="Intake and status tracking for visa applications.",
    version="0.1.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(router, prefix="/api", tags=["Applications"])


# Health check
@app.get("/health")
def health_check():
    return {"status": "healthy", "service": "Visa Application Tracker"}
