"""Dependency injection for FastAPI routes."""

import threading
import time

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
import jwt
from jwt import PyJWKClient

from donorsync.config import get_settings, Settings
from donorsync.services.sync_service import SyncCoordinator


security = HTTPBearer()

JWKS_CACHE_TTL = 3600  # 1 hour


class JwksClientCache:
    """Holds one PyJWKClient per JWKS URL and rebuilds it after `ttl` seconds."""

    def __init__(self, ttl: float = JWKS_CACHE_TTL):
        self.ttl = ttl
        self._client: PyJWKClient | None = None
        self._url: str | None = None
        self._created_at: float = 0
        self._lock = threading.Lock()

    def get(self, jwks_url: str) -> PyJWKClient:
        with self._lock:
            current_time = time.time()
            if (
                self._client is None
                or self._url != jwks_url
                or (current_time - self._created_at) > self.ttl
            ):
                self._client = PyJWKClient(jwks_url)
                self._url = jwks_url
                self._created_at = current_time
            return self._client


jwks_cache = JwksClientCache()


async def get_current_account_id(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    settings: Settings = Depends(get_settings),
) -> str:
    """
    Validate the Supabase JWT and return the caller's account id.

    The token's `sub` claim is the account id every CRM table is keyed on.
    """
    token = credentials.credentials

    try:
        jwks_client = jwks_cache.get(f"{settings.supabase_url}/auth/v1/.well-known/jwks.json")
        signing_key = jwks_client.get_signing_key_from_jwt(token)

        payload = jwt.decode(
            token,
            signing_key.key,
            algorithms=["RS256", "ES256"],
            audience="authenticated",
            issuer=f"{settings.supabase_url}/auth/v1",
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except jwt.PyJWTError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid token: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        )

    account_id = payload.get("sub")
    if account_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token: missing user ID",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return account_id


def get_sync_coordinator(request: Request) -> SyncCoordinator:
    """The long-lived coordinator created in the app lifespan."""
    coordinator = getattr(request.app.state, "sync_coordinator", None)
    if coordinator is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Sync service not configured",
        )
    return coordinator
