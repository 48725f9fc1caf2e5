"""
RSA key pairs for RSA-OAEP-256 encrypted cookies.

Keys are generated with ``cryptography`` and wrapped as ``jwcrypto`` JWKs.
"""

import asyncio
import logging
from dataclasses import dataclass

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives.asymmetric import rsa
from jwcrypto import jwk

from jwe_cookie_map.exceptions import KeyGenerationError

logger = logging.getLogger(__name__)

# Key management and content encryption algorithms of every generated key pair.
ALGORITHM = "RSA-OAEP-256"
ENCRYPTION = "A256GCM"

_PUBLIC_EXPONENT = 65537
_KEY_SIZE = 2048


@dataclass(frozen=True)
class KeyPair:
    """An RSA private/public key pair. The public key encrypts, the private key decrypts."""

    private_key: jwk.JWK
    public_key: jwk.JWK

    @classmethod
    def from_pem(
        cls,
        private_pem: bytes,
        public_pem: bytes | None = None,
        *,
        password: bytes | None = None,
    ) -> "KeyPair":
        """
        Load a persisted key pair from PEM data.

        Args:
            private_pem: PEM encoded RSA private key.
            public_pem: PEM encoded RSA public key. Derived from the private key when omitted.
            password: Password of an encrypted private key.

        Returns:
            KeyPair: The loaded key pair.

        Raises:
            ValueError: If the PEM data cannot be parsed or holds no private key.

        """
        private_key = jwk.JWK.from_pem(private_pem, password=password)
        if not private_key.has_private:
            msg = "The private PEM data does not contain a private key."
            raise ValueError(msg)
        public_key = jwk.JWK.from_pem(public_pem) if public_pem is not None else private_key.public()
        return cls(private_key=private_key, public_key=public_key)

    def export_private_pem(self, password: bytes | None = None) -> bytes:
        """Return the private key as PKCS#8 PEM, encrypted when a password is given."""
        return self.private_key.export_to_pem(private_key=True, password=password)

    def export_public_pem(self) -> bytes:
        """Return the public key as SubjectPublicKeyInfo PEM."""
        return self.public_key.export_to_pem()


def create_key_pair() -> KeyPair:
    """
    Generate a new extractable RSA key pair for RSA-OAEP-256.

    Returns:
        KeyPair: The new key pair.

    Raises:
        KeyGenerationError: If the cryptography backend cannot produce the key.

    """
    try:
        private = rsa.generate_private_key(public_exponent=_PUBLIC_EXPONENT, key_size=_KEY_SIZE)
    except (UnsupportedAlgorithm, ValueError) as err:
        msg = f"Could not generate a {_KEY_SIZE}-bit RSA key pair for {ALGORITHM}."
        raise KeyGenerationError(msg) from err

    logger.debug("Generated a new %s key pair", ALGORITHM)
    return KeyPair(private_key=jwk.JWK.from_pyca(private), public_key=jwk.JWK.from_pyca(private.public_key()))


async def generate_key_pair() -> KeyPair:
    """
    Generate a new key pair without blocking the event loop.

    Returns:
        KeyPair: The new key pair.

    """
    return await asyncio.to_thread(create_key_pair)
