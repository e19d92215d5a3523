from fastapi import APIRouter, Depends
from src.auth import AuthContext
from src.auth.dependencies import require_global_admin
from src.observability import metrics_snapshot

router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.get("/metrics")
async def get_metrics(auth: AuthContext = Depends(require_global_admin)):
    """In-process counters: guard denials, resolver fallbacks, invitation rejections."""
    return {"counters": metrics_snapshot()}
