from fastapi import APIRouter, Response, status

router = APIRouter(tags=["Health"])


@router.get("/health")
async def health_check():
    """Liveness probe for Docker and load balancers."""
    return {"status": "healthy", "service": "nephrawn-api"}


@router.get("/health/ready")
async def readiness_check(response: Response):
    """Readiness probe; fails while the database is unreachable."""
    from nephrawn.database import check_db

    if not await check_db():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {"status": "unavailable", "database": False}
    return {"status": "ready", "database": True}
