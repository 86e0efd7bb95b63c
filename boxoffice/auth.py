import bcrypt
import structlog
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .helpers import now_ts
from .model.db import get_db
from .model.orm import AdminUser
from .model.views import admin_view

logger = structlog.get_logger(__name__)

BCRYPT_ROUNDS = 12


# ----------------------------
# Password hashing
# ----------------------------
def hash_password(password: str, *, rounds: int = BCRYPT_ROUNDS) -> str:
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(password.encode(), salt).decode()


def verify_password(password: str, stored: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode(), stored.encode())
    except ValueError:
        # not a bcrypt hash, or a password bcrypt refuses
        return False


# ----------------------------
# Session helpers
# ----------------------------
def is_admin(request: Request) -> bool:
    return bool(request.session.get("admin_id"))


def require_admin(request: Request) -> None:
    if not is_admin(request):
        raise HTTPException(status_code=401, detail="admin login required")


# ----------------------------
# Routes
# ----------------------------
router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/login")
async def login(
    payload: dict, request: Request, db: AsyncSession = Depends(get_db)
):
    email = str(payload.get("email") or "").strip().lower()
    password = str(payload.get("password") or "")
    if not email or not password:
        raise HTTPException(400, detail="email and password are required")

    async with db.begin():
        user = (await db.execute(
            select(AdminUser).where(AdminUser.email == email)
        )).scalar_one_or_none()
        if user is None or not verify_password(password, user.password_hash):
            logger.warning("admin_login_failed", email=email)
            raise HTTPException(401, detail="Invalid credentials")
        user.last_login_at = now_ts()

    request.session["admin_id"] = user.id
    request.session["admin_email"] = user.email
    logger.info("admin_login", admin_id=user.id)
    return {"ok": True, "user": admin_view(user)}


@router.get("/me")
async def me(request: Request, db: AsyncSession = Depends(get_db)):
    admin_id = request.session.get("admin_id")
    if not admin_id:
        return {"authenticated": False, "user": None}
    user = await db.get(AdminUser, admin_id)
    if user is None:
        request.session.clear()
        return {"authenticated": False, "user": None}
    return {"authenticated": True, "user": admin_view(user)}


@router.post("/logout")
async def logout(request: Request):
    request.session.clear()
    return {"ok": True}
