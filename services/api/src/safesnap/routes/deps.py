"""Shared route dependencies: the service container and the calling user."""

import logging

from fastapi import Depends, Request

from services.api.src.safesnap.container import Container
from services.api.src.safesnap.core.errors import AccessDeniedError, AuthenticationError
from services.api.src.safesnap.core.redaction import redact_dict
from services.api.src.safesnap.db.repository import UserRepository
from services.api.src.safesnap.domains.safety.schemas import Caller
from services.api.src.safesnap.schemas.enums import Role

logger = logging.getLogger(__name__)

USER_HEADER = "x-user-email"


def get_container(request: Request) -> Container:
    return request.app.state.container


def current_caller(request: Request, container: Container = Depends(get_container)) -> Caller:
    """Resolve the gateway-authenticated email to a known user."""
    email = request.headers.get(USER_HEADER, "").strip().lower()
    if not email:
        container.metrics.record_auth(False)
        raise AuthenticationError("Missing authenticated user")

    user = UserRepository(container.engine).get_by_email(email)
    if user is None:
        container.metrics.record_auth(False)
        logger.warning("unknown_user", extra=redact_dict({"email": email}))
        raise AuthenticationError("Unknown user")

    container.metrics.record_auth(True)
    return Caller(
        user_id=user["id"],
        email=user["email"],
        role=Role(user["role"]),
        full_name=user["full_name"],
    )


def manager_caller(caller: Caller = Depends(current_caller)) -> Caller:
    if not caller.is_manager:
        raise AccessDeniedError("Manager role required")
    return caller
