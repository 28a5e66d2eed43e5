import bcrypt
from loguru import logger

from app.core.config import settings

BCRYPT_PREFIXES = ("$2a$", "$2b$", "$2y$")


def get_password_hash(password: str) -> str:
    salt = bcrypt.gensalt(rounds=settings.bcrypt_rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Checks a password against its stored bcrypt hash.
    Anything that is not a bcrypt hash never matches.
    """
    if not hashed_password or not hashed_password.startswith(BCRYPT_PREFIXES):
        logger.warning("Rejected sign-in against a non-bcrypt password hash.")
        return False
    return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))
