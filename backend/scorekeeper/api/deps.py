import logging
from typing import Any, Dict, TypeVar

from fastapi import Depends, Header, HTTPException, Request, status

from ..audience import USERS_COLLECTION
from ..container import Container
from ..errors import ErrorKind, Result

logger = logging.getLogger("auth")

T = TypeVar("T")

_STATUS_BY_KIND = {
    ErrorKind.AUTHENTICATION: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.PERMISSION: status.HTTP_403_FORBIDDEN,
    ErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.EMPTY_AUDIENCE: status.HTTP_409_CONFLICT,
    ErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.DELIVERY: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.INFRASTRUCTURE_TRANSIENT: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def unwrap_or_http(result: Result[T]) -> T:
    if result.is_ok:
        return result.value
    error = result.error
    raise HTTPException(
        status_code=_STATUS_BY_KIND.get(error.kind, status.HTTP_500_INTERNAL_SERVER_ERROR),
        detail=error.to_dict(),
    )


def get_container(request: Request) -> Container:
    return request.app.state.container


def require_firebase_user(
    authorization: str = Header(default=None),
    container: Container = Depends(get_container),
) -> Dict[str, Any]:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing auth token",
        )
    token = authorization.split(" ", 1)[1].strip()
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing auth token",
        )
    try:
        return container.verify_id_token(token)
    except Exception as exc:
        logger.warning("Firebase token verification failed: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid auth token",
        ) from exc


def require_admin_user(
    user: Dict[str, Any] = Depends(require_firebase_user),
    container: Container = Depends(get_container),
) -> Dict[str, Any]:
    uid = str(user.get("uid") or "")
    if user.get("admin") is True or uid in container.settings.admin_uid_set:
        return user
    if uid:
        snapshot = container.db.collection(USERS_COLLECTION).document(uid).get()
        if snapshot.exists and (snapshot.to_dict() or {}).get("isAdmin") is True:
            return user
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail="Admin access required",
    )
