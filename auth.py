import hashlib
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Tuple

from fastapi import Cookie, Depends
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pymongo.database import Database

from config import Settings, get_settings
from database import get_db, sanitize, to_obj_id, utcnow
from errors import ErrorResponse

RESET_TOKEN_EXPIRE_MINUTES = 10

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    if not hashed:
        return False
    return pwd_context.verify(password, hashed)


def create_access_token(user_id: str, settings: Settings) -> str:
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.jwt_expire_minutes)
    return jwt.encode({"sub": user_id, "exp": expire}, settings.secret_key, algorithm=settings.algorithm)


def token_response(user: Dict, settings: Settings, status_code: int = 200) -> JSONResponse:
    """JSON body with the bearer token, also set as an httpOnly ``token`` cookie."""
    token = create_access_token(str(user["_id"]), settings)
    response = JSONResponse(status_code=status_code, content={"success": True, "token": token})
    response.set_cookie(
        "token",
        token,
        max_age=settings.jwt_cookie_expire_days * 24 * 60 * 60,
        httponly=True,
        secure=settings.is_production,
    )
    return response


def hash_reset_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def generate_reset_token() -> Tuple[str, str, datetime]:
    """Plaintext token for the email, its stored hash, and its expiry."""
    token = secrets.token_hex(20)
    return token, hash_reset_token(token), utcnow() + timedelta(minutes=RESET_TOKEN_EXPIRE_MINUTES)


async def get_current_user(
    bearer: Optional[str] = Depends(oauth2_scheme),
    token: Optional[str] = Cookie(None),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> Dict[str, Any]:
    raw = bearer or token
    if not raw:
        raise ErrorResponse("Unauthenticated.", 401)
    try:
        payload = jwt.decode(raw, settings.secret_key, algorithms=[settings.algorithm])
        user_id = payload.get("sub")
    except JWTError:
        raise ErrorResponse("Invalid token", 401)
    if not user_id:
        raise ErrorResponse("Invalid token", 401)

    try:
        user = db["user"].find_one({"_id": to_obj_id(user_id)})
    except ErrorResponse:
        user = None
    if not user:
        raise ErrorResponse("Invalid token", 401)
    return sanitize(user)


def require_role(*roles: str):
    async def role_dep(current_user=Depends(get_current_user)):
        if current_user.get("role") not in roles:
            raise ErrorResponse(
                f"User role {current_user.get('role')} is unauthorized to access this route", 403
            )
        return current_user
    return role_dep


def ensure_owner(record: Dict, current_user: Dict, owner_field: str = "user") -> None:
    """Admins pass; everyone else must be the record's owner."""
    if current_user.get("role") == "admin":
        return
    if str(record.get(owner_field)) != current_user["id"]:
        raise ErrorResponse("Unauthorized", 403)
