# storefront/api/auth.py
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from storefront.services.lock_service import LockService
from storefront.services.payment_client import PaymentClient
from storefront.utils.logging import get_logger
from storefront.utils.settings import JWT_ALGORITHM, SECRET_KEY

logger = get_logger(__name__)

# token wydaje zewnetrzny serwis userow, tu tylko weryfikacja
bearer_scheme = HTTPBearer(auto_error=False)

_credentials_exception = HTTPException(
    status_code=status.HTTP_401_UNAUTHORIZED,
    detail="Could not validate credentials",
    headers={"WWW-Authenticate": "Bearer"},
)


def decode_token(token: str) -> dict:
    payload = jwt.decode(token, SECRET_KEY, algorithms=[JWT_ALGORITHM])
    if payload.get("sub") is None:
        raise JWTError("Token has no subject")
    return payload


def get_token_payload(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> dict | None:
    if credentials is None:
        return None
    try:
        return decode_token(credentials.credentials)
    except JWTError as e:
        logger.warning(f"Rejected bearer token: {e}")
        return None


def get_optional_user_id(payload: dict | None = Depends(get_token_payload)) -> str | None:
    """User id for optional-auth routes; guests fall back to their session_id."""
    if payload is None:
        return None
    return str(payload["sub"])


def get_current_user_id(payload: dict | None = Depends(get_token_payload)) -> str:
    if payload is None:
        raise _credentials_exception
    return str(payload["sub"])


def get_current_admin(payload: dict | None = Depends(get_token_payload)) -> str:
    if payload is None:
        raise _credentials_exception

    if not payload.get("is_admin", False):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not enough permissions. Admin access required.",
        )
    return str(payload["sub"])


#zaleznosci infrastruktury, podmieniane w testach przez dependency_overrides
def get_lock_service() -> LockService:
    return LockService()


def get_payment_client() -> PaymentClient:
    return PaymentClient()
