"""Transaction signature validation for the intake path."""

from __future__ import annotations

from sniper.config import QueueSettings

BASE58_ALPHABET = frozenset("123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz")


def is_valid_signature(
    sig: object,
    min_length: int = 87,
    max_length: int = 98,
    spam_markers: tuple[str, ...] = (),
) -> bool:
    """True for a plausible base58 transaction signature.

    Rejects non-strings, lengths outside [min_length, max_length], non-base58
    characters, and anything containing a spam marker.
    """
    if not isinstance(sig, str):
        return False
    if not min_length <= len(sig) <= max_length:
        return False
    if not BASE58_ALPHABET.issuperset(sig):
        return False
    return not any(marker in sig for marker in spam_markers)


class SignatureValidator:
    """is_valid_signature() bound to the configured bounds and markers."""

    def __init__(self, settings: QueueSettings):
        self.min_length = settings.signature_min_length
        self.max_length = settings.signature_max_length
        self.spam_markers = tuple(settings.spam_markers)

    def __call__(self, sig: object) -> bool:
        return is_valid_signature(sig, self.min_length, self.max_length, self.spam_markers)
