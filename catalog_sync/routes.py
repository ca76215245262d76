#=======================================================================================
# catalog_sync/routes.py
# FastAPI routes for the bulk catalog import engine.
#
# ✅ Public API lives under /api/*, every endpoint requires HTTP Basic (admin)
# ✅ The import engine is synchronous; batches run in a worker thread
#
# IMPORTANT: In main_app.py, include with NO extra prefix to avoid /api/api duplication:
#   from catalog_sync.routes import router as api_router
#   app.include_router(api_router)   # <-- no prefix here
#=======================================================================================

import asyncio
import logging
import secrets
from typing import Any, Dict, Iterator, List

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from catalog_sync.config import ImportConfig, settings
from catalog_sync.db import RelationalStore, get_engine
from catalog_sync.exceptions import IllegalAttributeValueError
from catalog_sync.models.import_log import get_import_log
from catalog_sync.models.payloads import BatchRequest
from catalog_sync.sync.product_import import ImportOrchestrator

logger = logging.getLogger("uvicorn.error")

router = APIRouter(prefix="/api", tags=["Catalog Import API"])

# ---------------------------
# HTTP Basic
# ---------------------------
security = HTTPBasic()

def verify_admin(credentials: HTTPBasicCredentials = Depends(security)):
    ok_user = secrets.compare_digest(credentials.username or "", settings.ADMIN_USER or "")
    ok_pass = secrets.compare_digest(credentials.password or "", settings.ADMIN_PASS or "")
    if not (ok_user and ok_pass):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Basic"},
        )

# ---------------------------
# Dependencies
# ---------------------------
def get_store() -> Iterator[RelationalStore]:
    """One store (one connection) per request."""
    store = RelationalStore(get_engine())
    try:
        yield store
    finally:
        store.close()

def get_import_config() -> ImportConfig:
    return ImportConfig.from_settings(settings)

# ---------------------------
# Helpers
# ---------------------------
async def _run_batch(operation: str, payload: BatchRequest, store: RelationalStore, config: ImportConfig) -> Dict[str, Any]:
    transform_id = payload.settings.transform_id if payload.settings else None
    logger.info("[SYNC][%s] %s products (transform_id=%s)", operation.upper(), len(payload.products), transform_id)

    def _work() -> List[Dict[str, Any]]:
        orchestrator = ImportOrchestrator(store, config)
        return getattr(orchestrator, operation)(payload.products, transform_id=transform_id)

    try:
        results = await asyncio.to_thread(_work)
    except IllegalAttributeValueError as e:
        logger.error("[SYNC][%s] batch aborted: %s", operation.upper(), e)
        raise HTTPException(status_code=422, detail=str(e))
    return {"results": results}

# ----------------------------------------------------------------------
# Product batches
# ----------------------------------------------------------------------
@router.post("/products/add", dependencies=[Depends(verify_admin)])
async def api_products_add(payload: BatchRequest,
                           store: RelationalStore = Depends(get_store),
                           config: ImportConfig = Depends(get_import_config)):
    """
    Insert new products.

    Body:
      {
        "products": [ { "sku": "...", "price": "...", ... } ],
        "settings": { "transform_id": "..." }   # optional
      }

    Returns { results: [...] }, one entry per input product, in order.
    """
    return JSONResponse(content=await _run_batch("add", payload, store, config))

@router.post("/products/update", dependencies=[Depends(verify_admin)])
async def api_products_update(payload: BatchRequest,
                              store: RelationalStore = Depends(get_store),
                              config: ImportConfig = Depends(get_import_config)):
    """Update existing products; unknown SKUs come back as warnings."""
    return JSONResponse(content=await _run_batch("update", payload, store, config))

@router.post("/products/upsert", dependencies=[Depends(verify_admin)])
async def api_products_upsert(payload: BatchRequest,
                              store: RelationalStore = Depends(get_store),
                              config: ImportConfig = Depends(get_import_config)):
    return JSONResponse(content=await _run_batch("upsert", payload, store, config))

# ----------------------------------------------------------------------
# Metadata / log
# ----------------------------------------------------------------------
@router.get("/products/attributes", dependencies=[Depends(verify_admin)])
async def api_product_attributes(store: RelationalStore = Depends(get_store),
                                 config: ImportConfig = Depends(get_import_config)):
    """Attribute codes a product record may carry."""
    codes = await asyncio.to_thread(lambda: ImportOrchestrator(store, config).product_attribute_codes())
    return JSONResponse(content={"attributes": sorted(codes)})

@router.get("/import-log", dependencies=[Depends(verify_admin)])
async def api_import_log():
    """Batch summaries, oldest first."""
    return JSONResponse(content={"entries": get_import_log()})
