from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional


class BatchSettings(BaseModel):
    transform_id: Optional[str] = Field(None, description="Caller's transform/run identifier, copied to the import log")

    class Config:
        extra = "allow"


class BatchRequest(BaseModel):
    # Each product is an attribute code -> value mapping; "sku" is always expected.
    # "__DELETE__" / "__NULL__" are decoded by the engine, not here.
    products: List[Dict[str, Any]] = Field(default_factory=list, description="Denormalized product rows")
    settings: Optional[BatchSettings] = None

    class Config:
        extra = "allow"
