from passlib.context import CryptContext

from shortlinks.exceptions import InvalidPassword

__all__ = ["MAX_PASSWORD_BYTES", "PasswordHasher", "validate_password"]

# bcrypt only reads this many bytes of its input.
MAX_PASSWORD_BYTES = 72


def validate_password(password: str) -> str:
    if not password:
        raise InvalidPassword("Password must not be empty")
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise InvalidPassword(f"Password must be at most {MAX_PASSWORD_BYTES} bytes when UTF-8 encoded")
    return password


class PasswordHasher:
    """bcrypt hashing for link passwords. Plaintext is never stored or logged."""

    def __init__(self, rounds: int = 12) -> None:
        self._context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=rounds)

    def hash(self, password: str) -> str:
        return self._context.hash(validate_password(password))

    def verify(self, password: str | None, password_hash: str | None) -> bool:
        if not password or not password_hash:
            return False
        # Longer input would be truncated and could match a hash it should not.
        if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
            return False
        try:
            return self._context.verify(password, password_hash)
        except ValueError:
            # malformed stored hash
            return False
