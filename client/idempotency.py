"""Client-side idempotency key lifecycle."""
import logging
import uuid
from enum import Enum
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class KeyState(str, Enum):
    ACTIVE = "active"
    PENDING_ROTATION = "pending_rotation"


def generate_key() -> str:
    # uuid4 draws 122 random bits from os.urandom
    return str(uuid.uuid4())


class IdempotencyKeyManager:
    """
    Holds one idempotency key per submission session.

    The key stays ACTIVE across any number of retries. Only a confirmed success
    (201 created, or 200 replay of our own submission) moves it to
    PENDING_ROTATION, after which rotate() or the next current() issues a new one.
    Failed submissions never touch the key, so a retry is always safe.
    """

    def __init__(self, key_factory: Callable[[], str] = generate_key):
        self._key_factory = key_factory
        self._key: Optional[str] = None
        self._state = KeyState.ACTIVE

    @property
    def state(self) -> KeyState:
        return self._state

    def current(self) -> str:
        if self._key is None or self._state == KeyState.PENDING_ROTATION:
            self._issue()
        return self._key

    def confirm_success(self) -> None:
        if self._key is None:
            raise RuntimeError("No idempotency key has been issued yet")
        logger.debug(f"Submission with key '{self._key}' confirmed, rotation pending.")
        self._state = KeyState.PENDING_ROTATION

    def rotate(self) -> str:
        if self._state != KeyState.PENDING_ROTATION:
            raise RuntimeError("Idempotency key can only be rotated after a confirmed success")
        return self._issue()

    def _issue(self) -> str:
        previous = self._key
        self._key = self._key_factory()
        self._state = KeyState.ACTIVE
        logger.debug(f"Issued idempotency key '{self._key}' (previous: {previous}).")
        return self._key
