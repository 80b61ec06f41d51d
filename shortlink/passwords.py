"""bcrypt hashing for link passwords.

Hashing and checking are CPU-bound, so the async helpers push them onto a worker
thread and bound the wait with a timeout.
"""

import asyncio

import bcrypt

__all__ = ["hash_password", "check_password", "hash_password_async", "verify_password_async"]


def hash_password(password: str, rounds: int = 12) -> str:
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def check_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except (ValueError, TypeError):
        return False


async def hash_password_async(password: str, rounds: int = 12) -> str:
    return await asyncio.to_thread(hash_password, password, rounds)


async def verify_password_async(password: str, password_hash: str, timeout: float) -> bool:
    """Check a candidate secret against a stored hash.

    Raises:
        TimeoutError: If the check does not finish within ``timeout`` seconds.
    """
    return await asyncio.wait_for(asyncio.to_thread(check_password, password, password_hash), timeout)
