"""
Encryption settings shared by encrypted cookie maps.

Provides `EncryptionConfiguration` and the lazily created process-wide `default_configuration`.
"""

import functools
import logging
from typing import Any

from jwcrypto import jwk

from jwe_cookie_map.cookie_map import CookieOptions
from jwe_cookie_map.keys import ALGORITHM, ENCRYPTION, KeyPair, create_key_pair, generate_key_pair
from jwe_cookie_map.tokens import DecryptOptions, EncryptHook, TokenBuilder

logger = logging.getLogger(__name__)


def default_encrypt_hook(token: TokenBuilder) -> TokenBuilder:
    """
    Set the protected header matching generated key pairs.

    Custom hooks usually extend it::

        def hook(token):
            return default_encrypt_hook(token).set_issued_at()
    """
    return token.set_protected_header({"alg": ALGORITHM, "enc": ENCRYPTION})


class EncryptionConfiguration:
    """
    Keys, default cookie options and token hooks used to encrypt and decrypt cookies.

    Every attribute may be reassigned after construction. The keys are not validated, a
    mismatched pair only shows up as a decryption failure.
    """

    def __init__(
        self,
        private_key: jwk.JWK,
        public_key: jwk.JWK,
        *,
        encrypt_hook: EncryptHook = default_encrypt_hook,
        decrypt_options: DecryptOptions | None = None,
        default_cookie_options: CookieOptions | None = None,
    ) -> None:
        """
        Initialize the configuration.

        Args:
            private_key: Key used to decrypt cookie values.
            public_key: Key used to encrypt cookie values.
            encrypt_hook: Applied to every new token before the call-site hook and before encryption.
            decrypt_options: Defaults for every decryption. Call-site options override them key by key.
            default_cookie_options: Attributes for every encrypted cookie, overridden by the cookie
                map options and then by call-site options.

        """
        self.private_key = private_key
        self.public_key = public_key
        self.encrypt_hook = encrypt_hook
        self.decrypt_options: DecryptOptions = decrypt_options or {}
        self.default_cookie_options: CookieOptions = default_cookie_options or {}

    @classmethod
    def from_key_pair(cls, key_pair: KeyPair, **kwargs: Any) -> "EncryptionConfiguration":
        """Create a configuration from a `KeyPair`."""
        return cls(key_pair.private_key, key_pair.public_key, **kwargs)

    @classmethod
    def from_pem(
        cls,
        private_pem: bytes,
        public_pem: bytes | None = None,
        *,
        password: bytes | None = None,
        **kwargs: Any,
    ) -> "EncryptionConfiguration":
        """
        Create a configuration from persisted PEM keys.

        Raises:
            ValueError: If the PEM data cannot be parsed.

        """
        return cls.from_key_pair(KeyPair.from_pem(private_pem, public_pem, password=password), **kwargs)

    def merged_decrypt_options(self, override: DecryptOptions | None = None) -> DecryptOptions:
        """Return the default decrypt options overlaid with ``override``."""
        return {**self.decrypt_options, **(override or {})}

    def __repr__(self) -> str:
        """Return a string representation without key material."""
        hook = getattr(self.encrypt_hook, "__qualname__", repr(self.encrypt_hook))
        return f"<EncryptionConfiguration hook={hook} decrypt_options={self.decrypt_options!r}>"


async def configuration_with_new_key_pair(**kwargs: Any) -> EncryptionConfiguration:
    """
    Generate a new RSA-OAEP-256 key pair and wrap it in a configuration.

    Keyword arguments are passed to `EncryptionConfiguration`.
    """
    return EncryptionConfiguration.from_key_pair(await generate_key_pair(), **kwargs)


@functools.cache
def default_configuration() -> EncryptionConfiguration:
    """
    Return the process-wide configuration used when a cookie map is given none.

    It is created on first use with a random key pair that is never persisted, so cookies it
    encrypts cannot be decrypted after a restart. Load your own keys with
    `EncryptionConfiguration.from_pem` for anything beyond a single process.
    """
    logger.debug("Creating the default encryption configuration with a new key pair")
    return EncryptionConfiguration.from_key_pair(create_key_pair())
