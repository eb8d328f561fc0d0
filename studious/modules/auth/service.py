import hashlib
import logging
import time
from collections import OrderedDict
from supabase import Client
from fastapi import HTTPException
from typing import Any, Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

TOKEN_CACHE_TTL_SECONDS = 60
TOKEN_CACHE_MAX_SIZE = 500


class TokenCache:
    """Verified identities keyed by a hash of the access token, oldest evicted first."""

    def __init__(self, ttl_seconds: float = TOKEN_CACHE_TTL_SECONDS, max_size: int = TOKEN_CACHE_MAX_SIZE,
                 clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.max_size = max_size
        self._clock = clock
        self._entries: "OrderedDict[str, Tuple[Dict[str, Any], float]]" = OrderedDict()

    @staticmethod
    def key(token: str) -> str:
        return hashlib.sha256(token.encode()).hexdigest()

    def get(self, token: str) -> Optional[Dict[str, Any]]:
        key = self.key(token)
        entry = self._entries.get(key)
        if entry is None:
            return None
        identity, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return identity

    def put(self, token: str, identity: Dict[str, Any]) -> None:
        key = self.key(token)
        self._entries.pop(key, None)
        while len(self._entries) >= self.max_size:
            self._entries.popitem(last=False)
        self._entries[key] = (identity, self._clock() + self.ttl_seconds)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


# Shared by every AuthService so parallel requests with one token hit Supabase once
_token_cache = TokenCache()


def _strip_scheme(token: str) -> str:
    token = token.strip()
    scheme, _, rest = token.partition(" ")
    if scheme.lower() == "bearer":
        return rest.strip()
    return token


class AuthService:
    def __init__(self, supabase: Client, cache: Optional[TokenCache] = None):
        self.supabase = supabase
        self.cache = cache if cache is not None else _token_cache

    def get_current_user(self, token: str) -> Dict[str, Any]:
        """Resolve an access token to {id, email, full_name, user_metadata}; 401 when it is not valid."""
        token = _strip_scheme(token or "")
        if not token:
            raise HTTPException(status_code=401, detail="Missing access token")

        cached = self.cache.get(token)
        if cached is not None:
            return cached

        try:
            user_response = self.supabase.auth.get_user(jwt=token)
        except Exception as e:
            logger.warning(f"Token verification failed: {e}")
            message = str(e).lower()
            if "jwt" in message or "expired" in message or "invalid" in message:
                raise HTTPException(status_code=401, detail="Invalid or expired token")
            raise HTTPException(status_code=401, detail="Authentication failed")

        user = getattr(user_response, "user", None)
        if user is None:
            raise HTTPException(status_code=401, detail="Invalid or expired token")

        metadata = user.user_metadata or {}
        identity = {
            "id": user.id,
            "email": user.email,
            "full_name": metadata.get("full_name"),
            "user_metadata": metadata,
        }
        self.cache.put(token, identity)
        return identity
