from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError

ph = PasswordHasher()


def hash_password(pw: str) -> str:
    return ph.hash(pw)


def verify_password(stored_hash: str, candidate: str) -> bool:
    try:
        return ph.verify(stored_hash, candidate)
    except (VerificationError, InvalidHashError):
        return False
