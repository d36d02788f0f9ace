"""Admin API endpoints for background jobs."""
from fastapi import APIRouter, Header, HTTPException

from coaching.config import get_settings
from coaching.tasks.scheduler import get_scheduler_status, trigger_token_sweep

router = APIRouter(prefix="/admin", tags=["admin"])


def verify_admin_key(x_admin_key: str):
    admin_key = get_settings().admin_api_key
    if not admin_key or x_admin_key != admin_key:
        raise HTTPException(status_code=403, detail="Invalid admin key")


@router.get("/scheduler")
def scheduler_status(x_admin_key: str = Header(..., description="Admin API key")):
    """Scheduler state and the last token sweep result."""
    verify_admin_key(x_admin_key)
    return get_scheduler_status()


@router.post("/tokens/sweep")
def sweep_tokens(x_admin_key: str = Header(..., description="Admin API key")):
    """Delete expired activation tokens now."""
    verify_admin_key(x_admin_key)
    return trigger_token_sweep()
