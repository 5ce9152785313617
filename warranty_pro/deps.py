"""
Request dependencies: DB session, JWT auth for users, shared-secret auth for the cron hook.
"""

import hashlib
import hmac
import os
from datetime import datetime, timedelta
from typing import Optional

import jwt
from fastapi import Cookie, Depends, Header, HTTPException
from sqlalchemy.orm import Session

from .db import SessionLocal, engine
from .db_models import Base, UserDB
from .services.claims import ensure_counter
from .services.scheduler import CRON_SECRET

SECRET_KEY = os.getenv("JWT_SECRET", "change-me")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_HOURS = int(os.getenv("JWT_EXPIRE_HOURS", "8"))
_PBKDF2_ROUNDS = 200000


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=401, detail=detail)


def _bearer(header: Optional[str]) -> Optional[str]:
    if header and header.lower().startswith("bearer "):
        return header.split(" ", 1)[1].strip()
    return None


def hash_password(password: str) -> str:
    salt = os.getenv("JWT_SALT", "wp-salt").encode()
    return hashlib.pbkdf2_hmac("sha256", password.encode(), salt, _PBKDF2_ROUNDS).hex()


def verify_password(password: str, hashed: Optional[str]) -> bool:
    if not hashed:
        return False
    return hmac.compare_digest(hash_password(password), hashed)


def create_access_token(username: str, role: str) -> str:
    expires = datetime.utcnow() + timedelta(hours=ACCESS_TOKEN_EXPIRE_HOURS)
    return jwt.encode({"sub": username, "role": role, "exp": expires}, SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise _unauthorized("Token expired")
    except jwt.InvalidTokenError:
        raise _unauthorized("Invalid token")


def get_current_user(
    authorization: Optional[str] = Header(default=None),
    token_cookie: Optional[str] = Cookie(default=None, alias="access_token"),
    db: Session = Depends(get_db),
) -> UserDB:
    # header wins over the browser cookie
    token = _bearer(authorization) or token_cookie
    if not token:
        raise _unauthorized("Missing token")
    username = decode_token(token).get("sub")
    if not username:
        raise _unauthorized("Invalid token payload")
    user = db.query(UserDB).filter_by(username=username).first()
    if user is None:
        raise _unauthorized("User not found")
    return user


def require_user(user: UserDB = Depends(get_current_user)):
    return user


def require_cron(authorization: Optional[str] = Header(default=None)):
    presented = _bearer(authorization) or ""
    if not hmac.compare_digest(presented.encode(), CRON_SECRET.encode()):
        raise _unauthorized("Unauthorized")


def seed_admin(db: Session) -> None:
    username = os.getenv("ADMIN_USER", "admin")
    if db.query(UserDB).filter_by(username=username).first() is not None:
        return
    db.add(
        UserDB(
            username=username,
            role="admin",
            hashed_password=hash_password(os.getenv("ADMIN_PASS", "admin123")),
            email=os.getenv("ADMIN_EMAIL") or None,
        )
    )
    db.commit()


def init_db():
    Base.metadata.create_all(bind=engine)
    with SessionLocal() as db:
        ensure_counter(db)
        seed_admin(db)
