import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from realmgate.auth.errors import CodeMismatch, NoActiveCode
from realmgate.auth.models import Otp
from realmgate.auth.security import generate_numeric_code, new_id, pwd_context
from realmgate.core.config import settings

logger = logging.getLogger(__name__)

PURPOSE_2FA = "2fa"
PURPOSE_RESET = "reset"
PURPOSES = (PURPOSE_2FA, PURPOSE_RESET)


@dataclass
class IssuedOtp:
    otp: Otp
    code: str

    @property
    def expires_at(self) -> datetime:
        return self.otp.expires_at


def _check_purpose(purpose: str) -> None:
    if purpose not in PURPOSES:
        raise ValueError(f"Unknown OTP purpose: {purpose!r}")


def issue_otp(
    db: Session,
    *,
    user_id: str,
    purpose: str,
    ttl_minutes: int | None = None,
) -> IssuedOtp:
    _check_purpose(purpose)
    ttl = settings.OTP_TTL_MINUTES if ttl_minutes is None else ttl_minutes
    now = datetime.utcnow()
    code = generate_numeric_code(settings.OTP_LENGTH)

    row = Otp(
        id=new_id("otp", 12),
        user_id=user_id,
        purpose=purpose,
        code_hash=pwd_context.hash(code),
        expires_at=now + timedelta(minutes=ttl),
        consumed=False,
        created_at=now,
    )
    db.add(row)
    db.commit()
    db.refresh(row)

    if settings.LOG_OTP_CODES:
        logger.info("[%s OTP] user=%s code=%s", purpose.upper(), user_id, code)
    else:
        logger.info("Issued %s OTP %s for user %s", purpose, row.id, user_id)
    return IssuedOtp(otp=row, code=code)


def latest_active_otp(
    db: Session,
    *,
    user_id: str,
    purpose: str,
    now: datetime | None = None,
) -> Otp | None:
    _check_purpose(purpose)
    current = now or datetime.utcnow()
    return db.execute(
        select(Otp)
        .where(
            Otp.user_id == user_id,
            Otp.purpose == purpose,
            Otp.consumed.is_(False),
            Otp.expires_at > current,
        )
        .order_by(Otp.created_at.desc())
        .limit(1)
    ).scalar_one_or_none()


def verify_and_consume(db: Session, *, user_id: str, purpose: str, code: str) -> Otp:
    """Consume the latest active code for (user, purpose) if ``code`` matches it.

    Only the newest unconsumed, unexpired code is eligible, so issuing a new
    code supersedes older ones. A wrong code leaves the record untouched so
    the user can retry until it expires. The consume step is a conditional
    update: of two concurrent verifications of the same code only one wins.
    """
    now = datetime.utcnow()
    row = latest_active_otp(db, user_id=user_id, purpose=purpose, now=now)
    if row is None:
        raise NoActiveCode()

    try:
        matches = pwd_context.verify(code or "", row.code_hash)
    except ValueError:
        matches = False
    if not matches:
        raise CodeMismatch()

    result = db.execute(
        update(Otp)
        .where(Otp.id == row.id, Otp.consumed.is_(False), Otp.expires_at > now)
        .values(consumed=True)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.rollback()
        raise NoActiveCode()
    db.commit()
    db.refresh(row)
    return row
