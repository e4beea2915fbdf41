from fastapi import APIRouter

from ..config import settings

router = APIRouter()


@router.get("/health")
def health() -> dict[str, bool]:
    return {"ok": True}


@router.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok", "store_backend": settings.store_backend}
