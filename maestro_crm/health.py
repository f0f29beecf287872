# maestro_crm/health.py
from fastapi import APIRouter, Depends

from maestro_crm.config import Settings, get_settings

router = APIRouter()

@router.get("/health")
def health(settings: Settings = Depends(get_settings)):
    store = "memory" if settings.use_memory_store or not settings.store_base_url else "http"
    return {"ok": True, "store": store}
