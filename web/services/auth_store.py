import hmac
import logging

from werkzeug.security import check_password_hash, generate_password_hash


logger = logging.getLogger(__name__)


MIN_PASSWORD_LENGTH = 4


class AuthStore:
    """Single admin account taken from the settings file."""

    def __init__(self, username: str, password_hash: str):
        self.username = username
        self.password_hash = password_hash

    def verify_user(self, username: str, password: str) -> bool:
        u = (username or "").strip() if isinstance(username, str) else ""
        if not u or not isinstance(password, str):
            return False
        # Check the hash even on a username mismatch so both paths cost the same.
        try:
            pw_ok = check_password_hash(self.password_hash, password)
        except ValueError:
            logger.error("passwordHash in settings is not a recognised werkzeug hash")
            return False
        user_ok = hmac.compare_digest(u.encode("utf-8"), self.username.encode("utf-8"))
        return bool(user_ok and pw_ok)


def hash_password(password: str) -> str:
    if password is None or password == "":
        raise ValueError("Password is required.")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
    return generate_password_hash(password)
