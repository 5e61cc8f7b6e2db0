from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

import learnhub.models as models
from learnhub.database import get_db
from learnhub.errors import AuthError, ForbiddenError
from learnhub.security import TokenIssuer

bearer = HTTPBearer(auto_error=False)


def authorize(user: models.User | None, required_role: models.Role) -> None:
    if user is None or user.role != required_role:
        raise ForbiddenError()


def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer),
    db: Session = Depends(get_db),
) -> models.User:
    if credentials is None:
        raise AuthError("Not authenticated")
    user = TokenIssuer(db).resolve(credentials.credentials)
    if user is None:
        raise AuthError("Invalid or expired token")
    return user


def require_role(role: models.Role):
    """Dependency that admits only authenticated users holding ``role``."""

    def guard(user: models.User = Depends(get_current_user)) -> models.User:
        authorize(user, role)
        return user

    return guard


require_admin = require_role(models.Role.admin)
