from __future__ import annotations

from dataclasses import dataclass

from fastapi import HTTPException, Request, status

from ..config import settings
from ..errors import Unauthenticated
from ..services.auth import get_token_service


@dataclass
class OwnerContext:
    owner_id: str


def _token_from_request(request: Request) -> str:
    header = request.headers.get("authorization", "")
    scheme, _, credentials = header.partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    return request.cookies.get(settings.cookie_name) or ""


def require_owner(request: Request) -> OwnerContext:
    try:
        owner_id = get_token_service().verify(_token_from_request(request))
    except Unauthenticated as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required") from exc

    request.state.owner_id = owner_id
    return OwnerContext(owner_id=owner_id)
