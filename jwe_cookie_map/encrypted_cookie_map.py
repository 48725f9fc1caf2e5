"""
Encrypted cookie map built on top of a plaintext cookie collection.

Provides `EncryptedCookieMap`, which stores JSON payloads as JWE cookie values and decrypts them
back on a later request.
"""

import asyncio
import logging
from collections.abc import Iterator, Mapping
from typing import Any

from jwe_cookie_map.configuration import EncryptionConfiguration, configuration_with_new_key_pair, default_configuration
from jwe_cookie_map.cookie_map import CookieCollection, CookieMap, CookieOptions, HeaderList
from jwe_cookie_map.tokens import DecryptOptions, EncryptHook, JWTPayload, TokenBuilder, jwt_decrypt

logger = logging.getLogger(__name__)


class EncryptedCookieMap(Mapping[str, str]):
    """
    Manage encrypted cookies of one request/response cycle.

    Wrap a plaintext cookie collection. Plain reads and writes go straight to it, while
    `set_encrypted` and `get_decrypted` encrypt and decrypt JSON payloads with the keys of an
    `EncryptionConfiguration`.
    """

    def __init__(
        self,
        request_headers: Mapping[str, str] | None = None,
        *,
        response: HeaderList | None = None,
        options: CookieOptions | None = None,
        configuration: EncryptionConfiguration | None = None,
        cookies: CookieCollection | None = None,
    ) -> None:
        """
        Initialize the encrypted cookie map.

        Args:
            request_headers: Headers of the incoming request.
            response: Header list of the outgoing response, receives staged ``Set-Cookie`` headers.
            options: Default attributes for encrypted cookies, overriding the configuration defaults.
            configuration: Keys and hooks. Defaults to `default_configuration()`.
            cookies: Plaintext collection to wrap instead of building a `CookieMap` from the
                request headers and response.

        """
        self.configuration = configuration if configuration is not None else default_configuration()
        self._options = options
        self._cookies: CookieCollection = (
            cookies if cookies is not None else CookieMap(request_headers, response=response)
        )

    @property
    def cookies(self) -> CookieCollection:
        """Return the wrapped plaintext collection."""
        return self._cookies

    def __repr__(self) -> str:
        """
        Return a string representation of the EncryptedCookieMap.

        Returns:
            str: Human-readable state of the map.

        """
        return f"<EncryptedCookieMap wrapping {self._cookies!r}>"

    def __getitem__(self, k: str) -> str:
        """
        Get the raw (still encrypted) value of a cookie.

        Raises:
            KeyError: If the cookie is not present.

        """
        value = self._cookies.get(k)
        if value is None:
            msg = f"Cookie '{k}' not found."
            raise KeyError(msg)
        return value

    def __iter__(self) -> Iterator[str]:
        """Iterate over the names of the cookies visible in the wrapped collection."""
        return (key for key, _ in self._cookies.items())

    def __len__(self) -> int:
        """Return the number of cookies visible in the wrapped collection."""
        return sum(1 for _ in self._cookies.items())

    def get(self, key: str, default: str | None = None) -> str | None:
        """Return the raw value of a cookie, or ``default`` if absent."""
        value = self._cookies.get(key)
        return default if value is None else value

    def set(self, key: str, value: str | None, options: CookieOptions | None = None) -> None:
        """Stage a plaintext cookie on the wrapped collection, unchanged."""
        self._cookies.set(key, value, options)

    def delete(self, key: str, options: CookieOptions | None = None) -> None:
        """Stage the removal of a cookie."""
        self._cookies.set(key, None, options)

    def _cookie_options(self, options: CookieOptions | None) -> CookieOptions:
        return {**self.configuration.default_cookie_options, **(self._options or {}), **(options or {})}

    async def set_encrypted(
        self,
        key: str,
        payload: Mapping[str, Any],
        options: CookieOptions | None = None,
        encrypt_hook: EncryptHook | None = None,
    ) -> None:
        """
        Encrypt a payload and stage it as a cookie.

        The configuration hook runs first, then ``encrypt_hook``, so a call site can add claims
        without repeating the protected header.

        Args:
            key: Cookie name.
            payload: JSON object to encrypt.
            options: Cookie attributes overriding the map and configuration defaults.
            encrypt_hook: Extra token configuration for this cookie only.

        Raises:
            TypeError: If the payload is not a mapping.
            EncryptionError: If the payload cannot be encrypted. No cookie is staged.

        """
        configuration = self.configuration
        token = configuration.encrypt_hook(TokenBuilder(payload))
        if encrypt_hook is not None:
            token = encrypt_hook(token)

        value = await asyncio.to_thread(token.encrypt, configuration.public_key)
        self._cookies.set(key, value, self._cookie_options(options))
        logger.debug("Staged encrypted cookie %r", key)

    async def get_decrypted(self, key: str, decrypt_options: DecryptOptions | None = None) -> JWTPayload | None:
        """
        Decrypt the payload of a cookie.

        Args:
            key: Cookie name.
            decrypt_options: Options overriding the configuration defaults key by key.

        Returns:
            JWTPayload | None: The decrypted payload, or None if the cookie is absent.

        Raises:
            InvalidTokenFormat: If the value is not a JWE.
            DecryptionFailed: If the value cannot be decrypted with the configured private key.
            ClaimValidationFailed: If the claims do not satisfy the decrypt options.

        """
        value = self._cookies.get(key)
        if value is None:
            return None
        return await self._decrypt(value, decrypt_options)

    async def _decrypt(self, value: str, decrypt_options: DecryptOptions | None = None) -> JWTPayload:
        configuration = self.configuration
        result = await asyncio.to_thread(
            jwt_decrypt,
            value,
            configuration.private_key,
            configuration.merged_decrypt_options(decrypt_options),
        )
        return result.payload

    async def decrypted_entries(self) -> dict[str, JWTPayload]:
        """
        Decrypt every cookie visible in the wrapped collection.

        All-or-nothing: the first cookie that fails to decrypt aborts the whole call.

        Returns:
            dict[str, JWTPayload]: Payloads keyed by cookie name.

        """
        return {key: await self._decrypt(value) for key, value in list(self._cookies.items())}

    async def set_multiple_encrypted(
        self,
        payloads: Mapping[str, Mapping[str, Any]],
        options: CookieOptions | None = None,
    ) -> None:
        """
        Encrypt and stage several cookies concurrently.

        Every entry is attempted. If any fails, the first error is raised once all entries have
        finished, and cookies that were staged successfully stay staged.
        """
        keys = list(payloads)
        results = await asyncio.gather(
            *(self.set_encrypted(key, payloads[key], options) for key in keys),
            return_exceptions=True,
        )
        errors = [(key, result) for key, result in zip(keys, results, strict=True) if isinstance(result, BaseException)]
        if not errors:
            return
        for key, error in errors[1:]:
            logger.warning("Also failed to stage encrypted cookie %r: %s", key, error)
        raise errors[0][1]


async def new_cookie_map_with_key_pair(
    request_headers: Mapping[str, str] | None = None,
    *,
    response: HeaderList | None = None,
    options: CookieOptions | None = None,
) -> EncryptedCookieMap:
    """
    Create an `EncryptedCookieMap` backed by a newly generated key pair.

    Without request headers the map starts from an empty header set.
    """
    return EncryptedCookieMap(
        request_headers if request_headers is not None else {},
        response=response,
        options=options,
        configuration=await configuration_with_new_key_pair(),
    )
