import os
from typing import Optional

from fastapi import Depends, Header, HTTPException
from jose import ExpiredSignatureError, JWTError, jwt

JWT_SECRET = os.getenv("JWT_SECRET")
if not JWT_SECRET:
    raise RuntimeError("JWT_SECRET is not set")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_ISSUER = os.getenv("JWT_ISSUER")
JWT_AUDIENCE = os.getenv("JWT_AUDIENCE")


def decode_token(token: str) -> dict:
    """Verify signature, expiry and (when configured) issuer/audience."""
    return jwt.decode(
        token,
        JWT_SECRET,
        algorithms=[JWT_ALGORITHM],
        audience=JWT_AUDIENCE,
        issuer=JWT_ISSUER,
        options={"verify_aud": bool(JWT_AUDIENCE)},
    )


def _claims_from_header(authorization: str) -> dict:
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(status_code=401, detail="Missing bearer token")
    try:
        return decode_token(token.strip())
    except ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token")


def require_user(authorization: Optional[str] = Header(default=None)) -> dict:
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing bearer token")
    return _claims_from_header(authorization)


def optional_user(authorization: Optional[str] = Header(default=None)) -> Optional[dict]:
    """
    Checkout accepts anonymous buyers. A missing header means a guest;
    a present but broken token is still rejected so it cannot silently
    turn an account order into a guest order.
    """
    if not authorization:
        return None
    return _claims_from_header(authorization)


def require_admin(claims: dict = Depends(require_user)) -> dict:
    if not claims.get("is_admin"):
        raise HTTPException(status_code=403, detail="Admin only")
    return claims


def user_id_from(claims: dict) -> int:
    try:
        return int(claims["sub"])
    except (KeyError, TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid token subject")
