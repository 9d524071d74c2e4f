"""Health check endpoints."""
from fastapi import APIRouter
from fastapi.responses import JSONResponse

from plansync.db.session import check_db_connection

router = APIRouter()


@router.get("/health")
def health_check():
    """
    Health check endpoint.
    Returns 503 when the database is unreachable.
    """
    if not check_db_connection():
        return JSONResponse(status_code=503, content={"status": "degraded", "database": False})
    return {"status": "ok", "database": True}
