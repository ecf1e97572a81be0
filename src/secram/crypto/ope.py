"""
Order-preserving encryption of absolute positions.

The cipher maps the plaintext domain ``[0, 2**63)`` into the ciphertext range ``[0, 2**64)`` by recursive range
splitting: each node of a binary descent over the domain halves its plaintext interval and cuts its ciphertext
interval near the proportional point, displaced by keyed noise drawn from a pseudo-random coin (HMAC-SHA256 over
the node's bounds). The noise follows the spread a uniformly random order-preserving function would show at that
node, so the ciphertext slack stays proportional to the plaintext count all the way down and neither positions nor
their differences survive encryption. Both halves always keep at least as many ciphertexts as plaintexts, so every
plaintext ends in a leaf with a non-empty ciphertext interval, from which its ciphertext is drawn. The resulting function is deterministic per key, strictly
increasing, and invertible by replaying the same descent on the ciphertext side.
"""
import hmac
import logging
from functools import lru_cache
from hashlib import sha256
from math import sqrt
from secrets import token_bytes
from struct import Struct
from typing import Final

from secram import SecramError

log = logging.getLogger(__name__)


# Exceptions and Warnings ----------------------------------------------------------------------------------------------
class CipherError(SecramError, ValueError):
    """Raised for values outside the cipher's domain or range, or ciphertexts that no plaintext maps to."""


class CipherSessionError(CipherError):
    """Raised when the cipher is used before ``init_session`` has been called."""


# Constants ------------------------------------------------------------------------------------------------------------
DOMAIN_BITS: Final = 63
RANGE_BITS: Final = 64
SALT_SIZE: Final = 16
_NODE = Struct('>4Q')
_KDF_LABEL = b'secram-position-ope'
_UNIFORM_BITS = 20
_UNIFORM_MASK = (1 << _UNIFORM_BITS) - 1


# Functions ------------------------------------------------------------------------------------------------------------
def derive_key(master_key: bytes, salt: bytes) -> bytes:
    """
    Derives the per-file cipher key from the master key and the salt stored in the file header.

    :param master_key: Secret master key.
    :param salt: Per-file salt.
    :return: 32-byte derived key.
    """
    if not master_key: raise CipherError('The master key must not be empty')
    return hmac.new(master_key, _KDF_LABEL + salt, sha256).digest()


def new_salt() -> bytes:
    """Returns a fresh random salt for a new file header."""
    return token_bytes(SALT_SIZE)


def _normal(coin: int) -> float:
    """Approximately standard normal deviate from twelve 20-bit uniforms of a 256-bit coin (Irwin-Hall)."""
    total = sum((coin >> (_UNIFORM_BITS * i)) & _UNIFORM_MASK for i in range(12))
    return (total - 6 * _UNIFORM_MASK) / (_UNIFORM_MASK + 1)


# Classes --------------------------------------------------------------------------------------------------------------
class PositionCipher:
    """
    Deterministic order-preserving cipher over absolute positions.

    The cipher is bound to one file at a time: ``init_session`` derives the key from the file's salt, after which
    ``encrypt`` and ``decrypt`` are pure functions of their argument.

    Args:
        master_key: Secret master key.
        cache_size: Number of tree nodes memoised per session.

    Examples:
        >>> cipher = PositionCipher(b'secret')
        >>> cipher.init_session(b'0123456789abcdef')
        >>> cipher.encrypt(100) < cipher.encrypt(101)
        True
        >>> cipher.decrypt(cipher.encrypt(100))
        100
    """
    __slots__ = ('_master_key', '_cache_size', '_key', '_split')
    MAX_PLAINTEXT: Final = (1 << DOMAIN_BITS) - 1
    MAX_CIPHERTEXT: Final = (1 << RANGE_BITS) - 1

    def __init__(self, master_key: bytes, cache_size: int = 1 << 16):
        self._master_key = master_key
        self._cache_size = cache_size
        self._key = None
        self._split = None

    def __repr__(self): return f"PositionCipher(initialized={self.initialized})"

    @property
    def initialized(self) -> bool: return self._key is not None

    def init_session(self, salt: bytes):
        """Binds the cipher to a file by deriving its key from the file's salt."""
        self._key = derive_key(self._master_key, salt)
        self._split = lru_cache(maxsize=self._cache_size)(self._sample)
        log.debug('Initialised position cipher session')

    def _sample(self, dlo: int, dhi: int, rlo: int, rhi: int) -> int:
        """
        Draws the cut point of an inner node (the last ciphertext of its left half) or the ciphertext of a leaf.

        The cut is the proportional split of the ciphertext interval plus keyed noise with the spread of the
        matching order statistic of a random order-preserving function, clamped so both halves stay feasible.
        """
        coin = int.from_bytes(hmac.new(self._key, _NODE.pack(dlo, dhi, rlo, rhi), sha256).digest(), 'big')
        if dlo == dhi: return rlo + coin % (rhi - rlo + 1)
        size, width = dhi - dlo + 1, rhi - rlo + 1
        left = (dhi - dlo) // 2 + 1
        lo = rlo + left - 1  # Left half keeps at least `left` ciphertexts
        hi = rhi - (size - left)  # Right half keeps at least `size - left` ciphertexts
        if lo == hi: return lo
        spread = width * sqrt(left * (size - left) * (width - size) / (size * size * size * width))
        cut = rlo + (left * width) // size - 1 + round(_normal(coin) * spread)
        return min(max(cut, lo), hi)

    def _check_session(self):
        if self._key is None: raise CipherSessionError('Cipher session not initialised; call init_session(salt)')

    def encrypt(self, position: int) -> int:
        """
        Encrypts an absolute position.

        Raises:
            CipherSessionError: If no session is initialised.
            CipherError: If the position is outside ``[0, 2**63)``.
        """
        self._check_session()
        if not 0 <= position <= self.MAX_PLAINTEXT: raise CipherError(f'Position {position} is outside the domain')
        dlo, dhi, rlo, rhi = 0, self.MAX_PLAINTEXT, 0, self.MAX_CIPHERTEXT
        while dlo != dhi:
            mid = dlo + (dhi - dlo) // 2
            cut = self._split(dlo, dhi, rlo, rhi)
            if position <= mid: dhi, rhi = mid, cut
            else: dlo, rlo = mid + 1, cut + 1
        return self._split(dlo, dhi, rlo, rhi)

    def decrypt(self, ciphertext: int) -> int:
        """
        Decrypts a ciphertext produced by ``encrypt`` in the same session.

        Raises:
            CipherSessionError: If no session is initialised.
            CipherError: If the ciphertext is outside the range or is not the image of any position.
        """
        self._check_session()
        if not 0 <= ciphertext <= self.MAX_CIPHERTEXT:
            raise CipherError(f'Ciphertext {ciphertext} is outside the range')
        dlo, dhi, rlo, rhi = 0, self.MAX_PLAINTEXT, 0, self.MAX_CIPHERTEXT
        while dlo != dhi:
            mid = dlo + (dhi - dlo) // 2
            cut = self._split(dlo, dhi, rlo, rhi)
            if ciphertext <= cut: dhi, rhi = mid, cut
            else: dlo, rlo = mid + 1, cut + 1
        if self._split(dlo, dhi, rlo, rhi) != ciphertext: raise CipherError(f'Invalid ciphertext {ciphertext}')
        return dlo
