"""
System wiring and request dependencies
"""

from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Iterable, Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..audit import AuditTrail
from ..config import get_config
from ..context import RequestContext, Role
from ..currency import Currency
from ..errors import AuthenticationError, PaisaError
from ..loans import LoanManager
from ..logging_config import get_logger
from ..month_locks import MonthLockManager
from ..storage import create_storage


logger = get_logger("namma_paisa.api")

security = HTTPBearer(auto_error=False)


class PaisaSystem:
    """Loans service with all components initialized"""

    def __init__(self, database_url: Optional[str] = None):
        config = get_config()
        self.storage = create_storage(database_url or config.database_url)
        self.audit_trail = AuditTrail(self.storage)
        self.month_locks = MonthLockManager(
            self.storage, self.audit_trail, Currency.from_code(config.default_currency)
        )
        self.loan_manager = LoanManager(
            self.storage, self.month_locks, self.audit_trail,
            closure_tolerance=Decimal(config.closure_tolerance)
        )


# Global system instance, built on first request
paisa_system: Optional[PaisaSystem] = None


def get_system() -> PaisaSystem:
    global paisa_system
    if paisa_system is None:
        paisa_system = PaisaSystem()
    return paisa_system


def create_access_token(
    user_id: str,
    roles: Iterable[Role] = (Role.CUSTOMER,),
    expires_in_hours: Optional[int] = None
) -> str:
    """Issue a signed bearer token carrying the user id and role names"""
    config = get_config()
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "roles": [role.value for role in roles],
        "iat": now,
        "exp": now + timedelta(hours=expires_in_hours or config.jwt_expiry_hours),
    }
    return jwt.encode(payload, config.jwt_secret, algorithm=config.jwt_algorithm)


def get_request_context(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> RequestContext:
    """Dependency that validates the bearer JWT and returns the caller"""
    config = get_config()
    if not config.auth_enabled:
        return RequestContext(user_id=config.dev_user_id)

    if not credentials:
        raise AuthenticationError("Unauthorized")
    try:
        payload = jwt.decode(credentials.credentials, config.jwt_secret, algorithms=[config.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token expired")
    except jwt.InvalidTokenError:
        raise AuthenticationError("Invalid token")

    user_id = payload.get("sub")
    if not user_id:
        raise AuthenticationError("Invalid token")
    roles = Role.parse_many(payload.get("roles") or []) or frozenset({Role.CUSTOMER})
    return RequestContext(user_id=str(user_id), roles=roles)


@contextmanager
def reported_as(message: str):
    """Turn unexpected failures inside a route into a 500 with a route-specific message"""
    try:
        yield
    except PaisaError:
        raise
    except Exception:
        logger.exception(message)
        raise PaisaError(message)
