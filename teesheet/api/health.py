from fastapi import APIRouter

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check() -> dict[str, str]:
    return {"status": "healthy", "service": "teesheet"}


@router.get("/")
async def root() -> dict[str, str | dict[str, str]]:
    return {
        "service": "TeeSheet - Golf Tee-Sheet Provider Layer",
        "version": "0.1.0",
        "endpoints": {
            "health": "/health",
            "jobs": "/jobs/index-tee-times",
            "bookings": "/bookings",
        },
    }
