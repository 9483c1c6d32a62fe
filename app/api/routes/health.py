"""
Health API Routes
"""
from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from app.database import database_health

router = APIRouter()


@router.get("/health")
async def health_check(request: Request) -> JSONResponse:
    """Application, database and workflow scheduler health"""
    db = database_health()
    services = getattr(request.app.state, "workflow_services", None)
    scheduler = services.scheduler if services else None
    ok = bool(db["ok"])
    return JSONResponse(
        status_code=status.HTTP_200_OK if ok else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "healthy" if ok else "degraded",
            "database": db,
            "scheduler": {
                "running": bool(scheduler and scheduler.running),
                "frequency": scheduler.frequency.value if scheduler else None,
                "last_tick_at": scheduler.last_tick_at.isoformat()
                if scheduler and scheduler.last_tick_at else None,
            },
        },
    )
