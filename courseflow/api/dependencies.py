from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from typing import Annotated
from uuid import UUID

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer

from courseflow.db.engine import async_session_factory, session_scope
from courseflow.models.principal import Principal
from courseflow.repos.catalog_repo import catalog_repo
from courseflow.repos.enrollment_repo import enrollment_repo
from courseflow.repos.pg_progress_repo import PgProgressRepo
from courseflow.repos.progress_repo import ProgressRepo, progress_repo
from courseflow.services import token_service
from courseflow.services.cache import PendingInvalidations
from courseflow.services.catalog_service import CatalogService
from courseflow.services.enrollment_service import EnrollmentService
from courseflow.services.progress_service import ProgressService
from courseflow.services.recalculation import UnitAccessRecalculator
from courseflow.services.student_view import StudentViewReader
from courseflow.services.unlock_service import UnlockPropagator

logger = logging.getLogger(__name__)

# Tokens are issued by the platform auth service; tokenUrl only feeds the docs.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/oauth/token")


def require_user(
    raw_token: Annotated[str, Depends(oauth2_scheme)],
) -> Principal:
    """Extract and validate the JWT bearer token. Returns a Principal.

    Used as a FastAPI dependency on any protected endpoint.
    """
    try:
        claims = token_service.decode_access_token(raw_token)
        user_id = UUID(claims["sub"])
    except jwt.ExpiredSignatureError:
        logger.warning("Expired token rejected")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token expired",
            headers={"WWW-Authenticate": "Bearer"},
        ) from None
    except (jwt.InvalidTokenError, ValueError) as e:
        logger.warning("Invalid token rejected: %s", e)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from None

    principal = Principal(
        user_id=user_id,
        roles=frozenset(claims.get("roles", [])),
    )
    logger.debug(
        "Token validated for user=%s roles=%s",
        principal.user_id,
        principal.roles,
    )
    return principal


def require_role(role: str):
    """Dependency factory: demand a specific role.

    Usage: Depends(require_role("admin"))
    Returns the Principal if the role is present, else 403.
    """

    def _guard(
        principal: Annotated[Principal, Depends(require_user)],
    ) -> Principal:
        if not principal.has_role(role):
            logger.warning(
                "Access denied: user=%s missing role=%s",
                principal.user_id,
                role,
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return principal

    return _guard


def require_any_role(roles: set[str]):
    """Dependency factory: demand at least one of the given roles.

    Usage: Depends(require_any_role({"admin", "instructor"}))
    """

    def _guard(
        principal: Annotated[Principal, Depends(require_user)],
    ) -> Principal:
        if not principal.has_any_role(roles):
            logger.warning(
                "Access denied: user=%s has none of roles=%s",
                principal.user_id,
                roles,
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return principal

    return _guard


# ---------------------------------------------------------------------------
# Store and service wiring
# ---------------------------------------------------------------------------
# Catalog and enrollment live in process.  The progress store is the
# PostgreSQL one (one session per request) when DATABASE_URL is set,
# otherwise the module-level in-memory singleton.


def get_pending_invalidations() -> PendingInvalidations:
    return PendingInvalidations()


PendingInvalidationsDep = Annotated[
    PendingInvalidations, Depends(get_pending_invalidations)
]


async def get_progress_repo(
    pending: PendingInvalidationsDep,
) -> AsyncGenerator[ProgressRepo, None]:
    # Cached views are dropped only once session_scope has committed.
    try:
        if async_session_factory is None:
            yield progress_repo
        else:
            async with session_scope() as session:
                yield PgProgressRepo(session)
    finally:
        await pending.flush()


ProgressRepoDep = Annotated[ProgressRepo, Depends(get_progress_repo)]


def get_propagator(store: ProgressRepoDep) -> UnlockPropagator:
    return UnlockPropagator(catalog_repo, enrollment_repo, store)


PropagatorDep = Annotated[UnlockPropagator, Depends(get_propagator)]


def get_catalog_service(
    store: ProgressRepoDep, propagator: PropagatorDep
) -> CatalogService:
    return CatalogService(catalog_repo, store, propagator)


def get_enrollment_service(propagator: PropagatorDep) -> EnrollmentService:
    return EnrollmentService(catalog_repo, enrollment_repo, propagator)


def get_progress_service(
    store: ProgressRepoDep, propagator: PropagatorDep
) -> ProgressService:
    return ProgressService(catalog_repo, enrollment_repo, store, propagator)


def get_recalculator(store: ProgressRepoDep) -> UnitAccessRecalculator:
    return UnitAccessRecalculator(catalog_repo, enrollment_repo, store)


def get_student_view_reader(store: ProgressRepoDep) -> StudentViewReader:
    return StudentViewReader(catalog_repo, enrollment_repo, store)
