"""
Iterable map interface for managing JWE encrypted cookies server side.

This package exposes two main classes:
- `EncryptedCookieMap`: read plain cookies, set encrypted ones and decrypt them back.
- `EncryptionConfiguration`: the key pair, cookie defaults and hooks shared by cookie maps.

Without a configuration, `EncryptedCookieMap` uses `default_configuration()`, whose
RSA-OAEP-256 key pair is generated on first use and never persisted. For anything that
outlives the process, load your keys with `EncryptionConfiguration.from_pem`.
"""

from .configuration import (
    EncryptionConfiguration,
    configuration_with_new_key_pair,
    default_configuration,
    default_encrypt_hook,
)
from .cookie_map import CookieCollection, CookieMap, CookieOptions, merge_headers, parse_cookies
from .encrypted_cookie_map import EncryptedCookieMap, new_cookie_map_with_key_pair
from .exceptions import (
    ClaimValidationFailed,
    DecryptionFailed,
    EncryptionError,
    InvalidTokenFormat,
    JWECookieError,
    KeyGenerationError,
    TokenExpired,
)
from .keys import ALGORITHM, ENCRYPTION, KeyPair, create_key_pair, generate_key_pair
from .tokens import DecryptOptions, DecryptResult, EncryptHook, JWTPayload, TokenBuilder, jwt_decrypt

__all__ = [
    "ALGORITHM",
    "ENCRYPTION",
    "ClaimValidationFailed",
    "CookieCollection",
    "CookieMap",
    "CookieOptions",
    "DecryptOptions",
    "DecryptResult",
    "DecryptionFailed",
    "EncryptHook",
    "EncryptedCookieMap",
    "EncryptionConfiguration",
    "EncryptionError",
    "InvalidTokenFormat",
    "JWECookieError",
    "JWTPayload",
    "KeyGenerationError",
    "KeyPair",
    "TokenBuilder",
    "TokenExpired",
    "configuration_with_new_key_pair",
    "create_key_pair",
    "default_configuration",
    "default_encrypt_hook",
    "generate_key_pair",
    "jwt_decrypt",
    "merge_headers",
    "new_cookie_map_with_key_pair",
    "parse_cookies",
]
