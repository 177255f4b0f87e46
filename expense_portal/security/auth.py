"""Bearer-token authentication and the development impersonation bypass."""

from __future__ import annotations

import asyncio
import datetime as dt
from typing import Optional

import jwt

from expense_portal.config import Settings
from expense_portal.errors import UnauthenticatedError
from expense_portal.logging_config import get_logger
from expense_portal.modules.employees.service import EmployeeService
from expense_portal.security.rbac import AuthenticatedUser, Role

logger = get_logger(__name__)

JWT_ALGORITHM = "HS256"
MISSING_HEADER = "missing authorization header"
INVALID_TOKEN = "invalid authorization token"


def issue_token(
    settings: Settings, employee_id: str, role: Role, ttl_seconds: Optional[int] = None,
) -> str:
    """Sign a token for an employee. Used by the developer CLI and tests."""
    now = dt.datetime.now(dt.UTC)
    payload = {
        "sub": employee_id,
        "role": Role(role).value,
        "iat": now,
        "exp": now + dt.timedelta(seconds=ttl_seconds or settings.jwt_ttl_seconds),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=JWT_ALGORITHM)


def decode_token(settings: Settings, token: str) -> AuthenticatedUser:
    """Verify signature and expiry and turn the claims into an identity."""
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[JWT_ALGORITHM],
            options={"require": ["sub", "exp"]},
        )
    except jwt.PyJWTError as exc:
        logger.warning("jwt_decode_failed", error=str(exc))
        raise UnauthenticatedError(INVALID_TOKEN) from exc

    subject = payload.get("sub")
    try:
        role = Role(payload.get("role"))
    except ValueError as exc:
        logger.warning("jwt_unknown_role", role=payload.get("role"))
        raise UnauthenticatedError(INVALID_TOKEN) from exc
    if not isinstance(subject, str) or not subject:
        raise UnauthenticatedError(INVALID_TOKEN)

    return AuthenticatedUser(employee_id=subject, role=role)


class BypassIdentity:
    """Process-wide, read-once cache of the impersonated employee.

    The first caller resolves the configured HR identifier; every later call
    reuses the outcome, including "no such employee". Never invalidated.
    """

    def __init__(self, employees: EmployeeService, hr_identifier: str) -> None:
        self._employees = employees
        self._hr_identifier = hr_identifier
        self._lock = asyncio.Lock()
        self._resolved = False
        self._user: Optional[AuthenticatedUser] = None

    async def get(self) -> Optional[AuthenticatedUser]:
        if self._resolved:
            return self._user
        async with self._lock:
            if not self._resolved:
                employee = await self._employees.find_by_hr_identifier(self._hr_identifier)
                if employee is not None:
                    self._user = AuthenticatedUser(employee_id=employee.id, role=Role(employee.role))
                    logger.warning(
                        "auth_bypass_active",
                        hr_identifier=self._hr_identifier,
                        employee_id=employee.id,
                    )
                else:
                    logger.warning("auth_bypass_employee_missing", hr_identifier=self._hr_identifier)
                self._resolved = True
        return self._user


class Authenticator:
    """Turns request credentials into an AuthenticatedUser."""

    def __init__(self, settings: Settings, bypass: Optional[BypassIdentity] = None) -> None:
        if not settings.jwt_secret:
            raise ValueError("jwt_secret must be configured")
        self._settings = settings
        self._bypass = bypass

    async def authenticate(self, authorization: Optional[str]) -> AuthenticatedUser:
        if self._bypass is not None:
            try:
                user = await self._bypass.get()
            except Exception as exc:
                logger.warning("auth_bypass_lookup_failed", error=str(exc))
                user = None
            if user is not None:
                return user

        if not authorization:
            raise UnauthenticatedError(MISSING_HEADER)
        scheme, _, token = authorization.partition(" ")
        if scheme != "Bearer" or not token.strip():
            raise UnauthenticatedError(INVALID_TOKEN)
        return decode_token(self._settings, token.strip())


def build_authenticator(settings: Settings, employees: EmployeeService) -> Authenticator:
    bypass = None
    if settings.auth_bypass and settings.auth_bypass_hr_identifier.strip():
        bypass = BypassIdentity(employees, settings.auth_bypass_hr_identifier)
    return Authenticator(settings, bypass)
