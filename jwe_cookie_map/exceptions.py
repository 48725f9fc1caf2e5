"""Exceptions raised by jwe_cookie_map."""


class JWECookieError(Exception):
    """Base class for all errors raised by this package."""


class KeyGenerationError(JWECookieError):
    """Raise when a key pair cannot be generated."""


class EncryptionError(JWECookieError):
    """Raise when a payload cannot be turned into an encrypted token."""


class DecryptionFailed(JWECookieError):
    """
    Raise when a token is well formed but cannot be decrypted with the configured key.

    Covers a foreign key pair, a tampered ciphertext and an algorithm outside the allowed list.
    """


class InvalidTokenFormat(JWECookieError):
    """Raise when a cookie value is not a well formed JWE carrying a JSON object."""


class ClaimValidationFailed(JWECookieError):
    """Raise when a decrypted JWT claims set does not satisfy the decrypt options."""

    def __init__(self, message: str, claim: str, reason: str) -> None:
        """
        Initialize the error.

        Args:
            message: Human-readable description.
            claim: The claim (or header parameter) that failed verification.
            reason: Short machine-friendly reason, e.g. ``"check_failed"`` or ``"missing"``.

        """
        super().__init__(message)
        self.claim = claim
        self.reason = reason


class TokenExpired(ClaimValidationFailed):
    """Raise when the ``exp`` claim or ``max_token_age`` marks the token as expired."""
