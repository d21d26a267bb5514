# FastAPI Server for Contracts & Escrow

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging
import os
from dotenv import load_dotenv

from config.app_config import LOG_LEVEL
from database.config import init_db
from routers import contracts_router, milestones_router

load_dotenv()

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Marketplace Contracts API",
    description="Brand/influencer contract negotiation and milestone escrow",
    version="1.0.0"
)


@app.on_event("startup")
def startup_event():
    # Alembic owns the schema in production; create_all covers fresh local databases
    if os.getenv("AUTO_CREATE_TABLES", "true").lower() == "true":
        init_db()
    logger.info("Contracts API started")


# CORS Setup - Allow all origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
    allow_credentials=False,  # Required when using "*"
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# ROUTERS (v2 API)
# ============================================================================
app.include_router(contracts_router, prefix="/api/v2")
app.include_router(milestones_router, prefix="/api/v2")


@app.get("/")
def read_root():
    return {"status": "ok", "service": "contracts"}


@app.get("/health")
def health_check():
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("server:app", host="0.0.0.0", port=int(os.getenv("PORT", 8000)), reload=False)
