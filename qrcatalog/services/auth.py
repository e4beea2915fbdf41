from __future__ import annotations

import logging
import uuid
from typing import Optional

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from ..config import settings
from ..errors import Unauthenticated

logger = logging.getLogger(__name__)


class OwnerTokenService:
    """Issues and verifies signed tokens that name the owner of a request."""

    def __init__(self, secret: Optional[str] = None, ttl_hours: Optional[int] = None) -> None:
        self.serializer = URLSafeTimedSerializer(secret or settings.session_secret, salt="owner-session")
        self.ttl_seconds = int((ttl_hours or settings.session_ttl_hours) * 3600)

    def issue(self, owner_id: str | uuid.UUID) -> str:
        owner_uuid = uuid.UUID(str(owner_id))
        return self.serializer.dumps({"owner_id": str(owner_uuid)})

    def verify(self, token: str) -> str:
        if not token:
            raise Unauthenticated("Authentication required")
        try:
            payload = self.serializer.loads(token, max_age=self.ttl_seconds)
        except SignatureExpired as exc:
            raise Unauthenticated("Session expired") from exc
        except BadSignature as exc:
            raise Unauthenticated("Invalid session token") from exc

        try:
            return str(uuid.UUID(str(payload.get("owner_id"))))
        except (AttributeError, ValueError) as exc:
            logger.warning("owner_token_malformed")
            raise Unauthenticated("Invalid session token") from exc


def get_token_service() -> OwnerTokenService:
    return OwnerTokenService()
