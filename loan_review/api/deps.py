from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from loan_review.core.clock import Clock, get_clock
from loan_review.core.context import set_caller_id, set_tenant_id
from loan_review.core.security import decode_token
from loan_review.core.settings import settings
from loan_review.db.session import get_db
from loan_review.models import User


@dataclass(slots=True)
class TenantContext:
    org_id: str


@dataclass(frozen=True, slots=True)
class Caller:
    """Authenticated identity threaded through every workflow call."""

    user_id: UUID
    role: str


oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/token", auto_error=False)


def _resolve_subdomain(request: Request) -> str | None:
    host = request.headers.get("host", "")
    host = host.split(":")[0]
    if settings.allowed_tenant_hosts:
        if host not in settings.allowed_tenant_hosts:
            return None
    parts = host.split(".")
    # ignore localhost/invalid hosts
    if len(parts) >= 3:
        return parts[0]
    return None


async def get_tenant_context(
    request: Request,
    tenant_id: str | None = Header(default=None, alias="X-Tenant-ID"),
) -> TenantContext:
    mode = settings.tenancy_mode
    if mode == "multi":
        candidate = tenant_id or _resolve_subdomain(request)
        if not candidate:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Tenant resolution failed: provide X-Tenant-ID header or subdomain",
            )
        set_tenant_id(candidate)
        return TenantContext(org_id=candidate)

    default_org = settings.default_org_id
    set_tenant_id(default_org)
    return TenantContext(org_id=default_org)


async def get_db_session(db: AsyncSession = Depends(get_db)) -> AsyncSession:
    return db


async def get_current_user(
    token: str | None = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db_session),
    ctx: TenantContext = Depends(get_tenant_context),
) -> User:
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        payload = decode_token(token, expected_type="access")
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
        ) from exc
    user_sub = payload.get("sub")
    if not user_sub:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    try:
        user_id = UUID(str(user_sub))
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token") from exc

    stmt = select(User).where(User.id == user_id, User.org_id == ctx.org_id)
    result = await db.execute(stmt)
    user = result.scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    # Frozen reviewers stay authenticated so they can file a reactivation request.
    return user


async def get_caller(current_user: User = Depends(get_current_user)) -> Caller:
    set_caller_id(str(current_user.id))
    return Caller(user_id=current_user.id, role=current_user.role)


async def get_now(clock: Clock = Depends(get_clock)) -> datetime:
    return clock.now()
