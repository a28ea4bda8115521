import secrets
from hashlib import sha256

from passlib.context import CryptContext

from realmgate.core.config import settings

pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.BCRYPT_ROUNDS,
)

PASSWORD_ALPHABET = "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789!@#$%^&*"


def _ensure_bcrypt_limit(secret: str) -> None:
    # bcrypt limit is 72 BYTES, not characters
    if len(secret.encode("utf-8")) > 72:
        raise ValueError("Password too long (max 72 bytes).")


def hash_password(password: str) -> str:
    _ensure_bcrypt_limit(password)
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    _ensure_bcrypt_limit(password)
    try:
        return pwd_context.verify(password, password_hash)
    except ValueError:
        # malformed or unknown stored hash
        return False


def generate_password(length: int = 12) -> str:
    return "".join(secrets.choice(PASSWORD_ALPHABET) for _ in range(length))


def generate_access_secret() -> str:
    return secrets.token_hex(16)


def generate_refresh_secret() -> str:
    return secrets.token_hex(32)


def generate_numeric_code(length: int) -> str:
    return "".join(str(secrets.randbelow(10)) for _ in range(length))


def hash_token(token: str) -> str:
    return sha256(token.encode("utf-8")).hexdigest()


def new_id(prefix: str, nbytes: int = 10) -> str:
    return f"{prefix}_{secrets.token_hex(nbytes)}"


__all__ = [
    "generate_access_secret",
    "generate_numeric_code",
    "generate_password",
    "generate_refresh_secret",
    "hash_password",
    "hash_token",
    "new_id",
    "verify_password",
]
