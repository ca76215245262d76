#=================================================================
# catalog_sync/main_app.py
# FastAPI application entry-point for the catalog import engine.
#=================================================================

import logging, secrets

from fastapi import FastAPI, Depends, Request, HTTPException, status
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import HTTPBasic, HTTPBasicCredentials

import catalog_sync.logging_filters  # noqa: F401  (installs the log trimming filter)

# Public API under /api/* (admin auth on every route)
from catalog_sync.routes import router as api_router

from catalog_sync.db import init_db
from catalog_sync.config import settings

ADMIN_USER = settings.ADMIN_USER
ADMIN_PASS = settings.ADMIN_PASS

# --- FastAPI instance ---
app = FastAPI(
    title="Catalog Sync",
    description="Bulk product import into an EAV product catalog.",
)

# --- Logging setup (console, INFO level) ---
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s | %(message)s"
)
logger = logging.getLogger("uvicorn.error")
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)

# --- CORS ---
origins = settings.CORS_ORIGINS
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Simple HTTP Basic Auth for protected endpoints ---
security = HTTPBasic()

def verify_admin(credentials: HTTPBasicCredentials = Depends(security)):
    ok_user = secrets.compare_digest(credentials.username, ADMIN_USER)
    ok_pass = secrets.compare_digest(credentials.password, ADMIN_PASS)
    if not (ok_user and ok_pass):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": "Basic"},
        )

# ---------------- Include routers ----------------
app.include_router(api_router)           # /api/*

# --- Root endpoint ---
@app.get("/")
async def home():
    return {"status": "running", "service": "Catalog Sync"}

@app.get("/health", dependencies=[Depends(verify_admin)])
async def health():
    return {"status": "ok", "routes": sorted(r.path for r in app.routes)}

# --- Global error handler (keeps full stack trace in logs) ---
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled error", exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"detail": f"Import failed: {str(exc)}"},
    )

@app.on_event("startup")
async def _startup():
    init_db()

#if __name__ == "__main__":
#    import uvicorn
#
#    uvicorn.run(app, host="0.0.0.0", port=8000)
