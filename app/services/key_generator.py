import secrets
from abc import ABC, abstractmethod

# 16 bytes = 128 bits of randomness
KEY_BYTES = 16


class KeyGenerator(ABC):
    @abstractmethod
    def generate(self) -> str:
        """Return a fresh key for a new blob."""


class RandomKeyGenerator(KeyGenerator):
    """URL-safe keys drawn from the OS CSPRNG.

    Keys carry no ordering or process information, so holding one key does not
    help guess another.
    """

    def __init__(self, nbytes: int = KEY_BYTES):
        if nbytes < KEY_BYTES:
            raise ValueError(f"Keys need at least {KEY_BYTES} random bytes")
        self.nbytes = nbytes

    def generate(self) -> str:
        return secrets.token_urlsafe(self.nbytes)
