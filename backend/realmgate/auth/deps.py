from dataclasses import dataclass
from datetime import datetime

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from realmgate.auth.errors import InvalidAccessToken
from realmgate.auth.models import Token
from realmgate.auth.tokens import extend_expiry, find_by_access_token
from realmgate.clients.models import Client
from realmgate.db.session import get_db
from realmgate.users.models import User

bearer = HTTPBearer(auto_error=False)


@dataclass
class Principal:
    token: Token
    access_token: str
    user: User | None = None

    @property
    def is_client_session(self) -> bool:
        return self.token.is_client_session


def get_current_principal(
    creds: HTTPAuthorizationCredentials = Depends(bearer),
    db: Session = Depends(get_db),
) -> Principal:
    if not creds:
        raise HTTPException(status_code=401, detail="Missing token")

    found = find_by_access_token(db, creds.credentials)
    if not found:
        raise HTTPException(status_code=401, detail="Invalid token")

    if datetime.utcnow() > found.token.expires_at:
        raise HTTPException(status_code=401, detail="Token expired")

    try:
        extend_expiry(db, creds.credentials)
    except InvalidAccessToken:
        raise HTTPException(status_code=401, detail="Invalid token")

    token = found.token
    if token.is_client_session:
        client = db.get(Client, token.client_id)
        if not client or not client.is_active:
            raise HTTPException(status_code=401, detail="Invalid token")
        return Principal(token=token, access_token=creds.credentials)

    user = db.get(User, token.user_id)
    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="Invalid token")

    return Principal(token=token, access_token=creds.credentials, user=user)


def require_user(principal: Principal = Depends(get_current_principal)) -> User:
    if principal.is_client_session or principal.user is None:
        raise HTTPException(status_code=403, detail="User authentication required")
    return principal.user


def require_super_user(user: User = Depends(require_user)) -> User:
    if not user.is_super_user:
        raise HTTPException(status_code=403, detail="Super user privileges required")
    return user
