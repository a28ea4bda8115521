import logging
from datetime import datetime

from fastapi import APIRouter, Depends, Header, HTTPException
from sqlalchemy import select
from sqlalchemy.orm import Session

from realmgate.auth.security import hash_password, new_id
from realmgate.auth.tokens import issue_token
from realmgate.core.config import settings
from realmgate.db.session import get_db
from realmgate.system.schemas import BootstrapRequest, BootstrapResponse
from realmgate.users.models import User

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/bootstrap", response_model=BootstrapResponse)
def bootstrap(
    payload: BootstrapRequest,
    db: Session = Depends(get_db),
    x_bootstrap_secret: str | None = Header(default=None, alias="X-Bootstrap-Secret"),
):
    # 1) Must be enabled
    if not settings.BOOTSTRAP_ENABLED:
        raise HTTPException(status_code=403, detail="Bootstrap is disabled")

    # 2) Must provide correct secret
    expected = settings.BOOTSTRAP_SECRET
    if not expected or x_bootstrap_secret != expected:
        raise HTTPException(status_code=401, detail="Invalid bootstrap secret")

    # 3) Only allowed while there are no users at all
    if db.execute(select(User.id).limit(1)).first() is not None:
        raise HTTPException(status_code=409, detail="Bootstrap already completed")

    now = datetime.utcnow()
    user = User(
        id=new_id("u"),
        email=settings.ADMIN_EMAIL,
        password_hash=hash_password(payload.admin_password),
        first_name=payload.first_name,
        last_name=payload.last_name,
        is_super_user=True,
        realm_id=None,
        client_id=None,
        is_active=True,
        created_at=now,
        updated_at=now,
    )
    db.add(user)
    db.flush()
    issued = issue_token(db, user_id=user.id, is_super_user=True)
    logger.info("Bootstrap created super user %s", user.id)

    return BootstrapResponse(
        admin_id=user.id,
        admin_email=user.email,
        access_token=issued.access_token,
        refresh_token=issued.refresh_token,
    )
