import importlib
import logging

from fastapi import FastAPI, Depends
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import models
from config import CORS_ORIGINS, LOG_LEVEL
from database import engine, get_db

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

# Create all tables in the database (runs on startup)
models.Base.metadata.create_all(bind=engine)

# Initialize FastAPI app
app = FastAPI(
    title="Substitute Coverage API",
    description="Marks teachers absent and assigns substitutes to their classes.",
    version="1.0.0",
)

# --- Add CORS Middleware for Frontend ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Router Imports and Registration ---
def register_routers(app: FastAPI, names) -> list:
    """Imports and mounts each router; one broken router does not stop the others."""
    loaded = []
    for name in names:
        try:
            module = importlib.import_module(f"routers.{name}")
            app.include_router(module.router)
        except Exception:
            logger.exception("Failed to load %s router", name)
            continue
        logger.info("Registered %s router at %s", name, module.router.prefix)
        loaded.append(name)
    return loaded


register_routers(app, ("teacher", "absence"))


# --- Root Endpoint (Test & DB Status) ---
@app.get("/")
def read_root(db: Session = Depends(get_db)):
    """Simple check to ensure the service is running and connected to DB."""
    try:
        teacher_count = db.query(models.Teacher).count()
        return {
            "message": "Substitute Coverage API is running!",
            "db_status": f"Connected successfully. Teacher count: {teacher_count}"
        }
    except SQLAlchemyError:
        logger.exception("Database check failed")
        return {
            "message": "API is running, but DB connection failed.",
            "error": "Database error (check DB service logs)."
        }

# --- Healthcheck Endpoint ---
@app.get("/health")
def health_check():
    return {"status": "ok"}
