from dataclasses import dataclass
from typing import Callable

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from .settings import ALGORITHM, SECRET_KEY

COORDINATOR = "coordinator"
ADMIN = "admin"
ROLES = (COORDINATOR, ADMIN)

security = HTTPBearer()


@dataclass(frozen=True)
class Principal:
    """
    Authenticated caller, passed explicitly into every core operation.

    Attributes
    ----------
    user_id : int
        Identifier recorded as requester_id / performed_by.
    username : str
        Display name taken from the token subject.
    role : str
        Either 'coordinator' or 'admin'.
    """
    user_id: int
    username: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN


async def get_current_principal(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Principal:
    """
    Decode a JWT bearer token into a Principal.

    Parameters
    ----------
    credentials : HTTPAuthorizationCredentials
        Authorization header parsed by FastAPI's HTTPBearer.

    Returns
    -------
    Principal
        The authenticated caller.

    Raises
    ------
    HTTPException
        If the token is invalid, lacks required claims or names an
        unknown role.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = jwt.decode(credentials.credentials, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise credentials_exception

    username = payload.get("sub")
    role = payload.get("role")
    user_id = payload.get("user_id")
    if username is None or role not in ROLES or not isinstance(user_id, int):
        raise credentials_exception

    return Principal(user_id=user_id, username=username, role=role)


def require_roles(*allowed_roles: str) -> Callable:
    """
    Build a dependency that enforces a set of allowed roles.

    Parameters
    ----------
    allowed_roles : str
        One or more role names permitted to access a route.

    Returns
    -------
    Callable
        A FastAPI dependency returning the Principal, or raising HTTP 403.
    """

    async def dependency(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Not enough permissions",
            )
        return principal

    return dependency
