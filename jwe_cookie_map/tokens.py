"""
Encrypted JWT tokens built on top of jwcrypto.

Provides `TokenBuilder`, a chainable builder producing compact JWEs through `jwcrypto.jwt.JWT`,
and `jwt_decrypt`, which decrypts a compact JWE and has jwcrypto verify its JWT claims.
"""

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any, Self, TypedDict

from jwcrypto import jwe, jwk, jwt
from jwcrypto.common import JWException, json_decode

from jwe_cookie_map.exceptions import (
    ClaimValidationFailed,
    DecryptionFailed,
    EncryptionError,
    InvalidTokenFormat,
    TokenExpired,
)

JWTPayload = dict[str, Any]
TimeClaim = int | float | datetime | timedelta


class DecryptOptions(TypedDict, total=False):
    """
    Constraints applied by `jwt_decrypt`.

    Time values are seconds. Omitted keys disable the matching check, except ``exp`` and ``nbf``
    which are always verified when present in the claims set.
    """

    key_management_algorithms: Sequence[str]
    content_encryption_algorithms: Sequence[str]
    typ: str
    issuer: str
    audience: str | Sequence[str]
    subject: str
    required_claims: Sequence[str]
    max_token_age: int | float | timedelta
    clock_tolerance: int | float | timedelta


@dataclass(frozen=True)
class DecryptResult:
    """The decrypted claims set and the protected header it was sent with."""

    payload: JWTPayload
    protected_header: dict[str, Any]


def _now() -> int:
    return int(datetime.now(tz=UTC).timestamp())


def _to_epoch(value: TimeClaim) -> int:
    """Convert a claim time value to seconds since the epoch. A timedelta is relative to now."""
    if isinstance(value, datetime):
        return int(value.timestamp())
    if isinstance(value, timedelta):
        return _now() + int(value.total_seconds())
    return int(value)


def _seconds(value: int | float | timedelta) -> int:
    if isinstance(value, timedelta):
        return int(value.total_seconds())
    return int(value)


class TokenBuilder:
    """
    Build an encrypted JWT from a JSON payload.

    Every setter returns the builder itself so configuration hooks can chain calls::

        TokenBuilder({"foo": "bar"}).set_protected_header({"alg": "RSA-OAEP-256", "enc": "A256GCM"}).set_issued_at()
    """

    def __init__(self, payload: Mapping[str, Any]) -> None:
        """
        Initialize the builder.

        Args:
            payload: The JWT claims set. It is copied, the caller's mapping is never modified.

        Raises:
            TypeError: If the payload is not a mapping.

        """
        if not isinstance(payload, Mapping):
            msg = f"JWT payload must be a mapping, got {type(payload).__name__}."
            raise TypeError(msg)
        self._payload: JWTPayload = dict(payload)
        self._protected_header: dict[str, Any] = {}
        # Claims jwcrypto generates at encryption time (current time, random jti).
        self._default_claims: dict[str, None] = {}

    @property
    def payload(self) -> JWTPayload:
        """Return a copy of the claims set, without claims generated at encryption time."""
        return dict(self._payload)

    @property
    def protected_header(self) -> dict[str, Any]:
        """Return a copy of the protected header as it will be encrypted."""
        return dict(self._protected_header)

    def _set_claim(self, name: str, value: Any) -> Self:
        self._default_claims.pop(name, None)
        self._payload[name] = value
        return self

    def _generate_claim(self, name: str) -> Self:
        self._payload.pop(name, None)
        self._default_claims[name] = None
        return self

    def set_protected_header(self, header: Mapping[str, Any]) -> Self:
        """Merge parameters into the JWE protected header."""
        self._protected_header.update(header)
        return self

    def set_issuer(self, issuer: str) -> Self:
        """Set the ``iss`` claim."""
        return self._set_claim("iss", issuer)

    def set_subject(self, subject: str) -> Self:
        """Set the ``sub`` claim."""
        return self._set_claim("sub", subject)

    def set_audience(self, audience: str | Sequence[str]) -> Self:
        """Set the ``aud`` claim."""
        return self._set_claim("aud", audience if isinstance(audience, str) else list(audience))

    def set_jti(self, jwt_id: str | None = None) -> Self:
        """Set the ``jti`` claim, defaulting to a random UUID generated at encryption time."""
        return self._generate_claim("jti") if jwt_id is None else self._set_claim("jti", jwt_id)

    def set_issued_at(self, value: TimeClaim | None = None) -> Self:
        """Set the ``iat`` claim, defaulting to the time of encryption."""
        return self._generate_claim("iat") if value is None else self._set_claim("iat", _to_epoch(value))

    def set_not_before(self, value: TimeClaim) -> Self:
        """Set the ``nbf`` claim."""
        return self._set_claim("nbf", _to_epoch(value))

    def set_expiration_time(self, value: TimeClaim) -> Self:
        """Set the ``exp`` claim."""
        return self._set_claim("exp", _to_epoch(value))

    def encrypt(self, public_key: jwk.JWK) -> str:
        """
        Encrypt the claims set for the holder of the matching private key.

        Returns:
            str: The compact serialized JWE.

        Raises:
            EncryptionError: If the header lacks ``alg``/``enc``, the payload is not JSON
                serializable, or jwcrypto refuses the key or algorithm.

        """
        for parameter in ("alg", "enc"):
            if parameter not in self._protected_header:
                msg = f'JWE protected header "{parameter}" is missing.'
                raise EncryptionError(msg)

        try:
            token = jwt.JWT(
                header=self._protected_header,
                claims=self._payload,
                default_claims=self._default_claims or None,
            )
        except (TypeError, ValueError) as err:
            msg = "JWT payload is not JSON serializable."
            raise EncryptionError(msg) from err

        try:
            token.make_encrypted_token(public_key)
            return token.serialize()
        except (JWException, TypeError, ValueError) as err:
            msg = f"Could not encrypt the JWT: {err}"
            raise EncryptionError(msg) from err


EncryptHook = Callable[[TokenBuilder], TokenBuilder]


def _check_algorithm(header: Mapping[str, Any], parameter: str, allowed: Sequence[str] | None) -> None:
    if allowed is not None and header.get(parameter) not in allowed:
        msg = f'"{parameter}" (Algorithm) Header Parameter value not allowed.'
        raise DecryptionFailed(msg)


def _check_claim_types(payload: Mapping[str, Any]) -> None:
    """Reject registered claims whose JSON type jwcrypto cannot compare."""
    for claim in ("iat", "nbf", "exp"):
        value = payload.get(claim)
        if claim in payload and (isinstance(value, bool) or not isinstance(value, int | float)):
            msg = f'"{claim}" claim must be a number.'
            raise ClaimValidationFailed(msg, claim, "invalid")

    for claim in ("iss", "sub", "jti", "typ"):
        if claim in payload and not isinstance(payload[claim], str):
            msg = f'"{claim}" claim must be a string.'
            raise ClaimValidationFailed(msg, claim, "invalid")

    if "aud" in payload:
        audience = payload["aud"]
        if not isinstance(audience, str) and not (
            isinstance(audience, list) and all(isinstance(item, str) for item in audience)
        ):
            msg = '"aud" claim must be a string or a list of strings.'
            raise ClaimValidationFailed(msg, "aud", "invalid")


def _claims_to_check(payload: Mapping[str, Any], options: DecryptOptions) -> dict[str, Any]:
    """Translate decrypt options to jwcrypto ``check_claims``. A None value only checks presence."""
    check: dict[str, Any] = dict.fromkeys(options.get("required_claims", ()))
    check.update((claim, None) for claim in ("exp", "nbf") if claim in payload)
    if "max_token_age" in options:
        check.setdefault("iat", None)
    if "issuer" in options:
        check["iss"] = options["issuer"]
    if "subject" in options:
        check["sub"] = options["subject"]
    if "audience" in options:
        audience = options["audience"]
        check["aud"] = audience if isinstance(audience, str) else list(audience)
    return check


def _mismatched_claim(check: Mapping[str, Any], payload: Mapping[str, Any]) -> str:
    for claim, expected in check.items():
        if claim not in payload:
            return claim
        if expected is None or claim in ("exp", "nbf"):
            continue
        if claim == "aud":
            audiences = [payload[claim]] if isinstance(payload[claim], str) else payload[claim]
            expected_audiences = [expected] if isinstance(expected, str) else expected
            if not set(audiences).intersection(expected_audiences):
                return claim
        elif payload[claim] != expected:
            return claim
    return next(iter(check), "")


def _verify_claims(token: str, private_key: jwk.JWK, payload: JWTPayload, options: DecryptOptions) -> None:
    check = _claims_to_check(payload, options)
    tolerance = _seconds(options.get("clock_tolerance", 0))

    verified = jwt.JWT(check_claims=check, expected_type="JWE")
    verified.leeway = tolerance
    try:
        verified.deserialize(token, private_key)
    except jwt.JWTExpired as err:
        msg = '"exp" claim timestamp check failed.'
        raise TokenExpired(msg, "exp", "check_failed") from err
    except jwt.JWTNotYetValid as err:
        msg = '"nbf" claim timestamp check failed.'
        raise ClaimValidationFailed(msg, "nbf", "check_failed") from err
    except jwt.JWTMissingClaim as err:
        claim = next(name for name in check if name not in payload)
        msg = f'Missing required "{claim}" claim.'
        raise ClaimValidationFailed(msg, claim, "missing") from err
    except (jwt.JWTInvalidClaimValue, jwt.JWTInvalidClaimFormat) as err:
        claim = _mismatched_claim(check, payload)
        msg = f'Unexpected "{claim}" claim value.'
        raise ClaimValidationFailed(msg, claim, "check_failed") from err
    except JWException as err:
        msg = "Decryption operation failed."
        raise DecryptionFailed(msg) from err

    if "max_token_age" in options and _now() - payload["iat"] > _seconds(options["max_token_age"]) + tolerance:
        msg = '"iat" claim timestamp check failed (too far in the past).'
        raise TokenExpired(msg, "iat", "check_failed")


def jwt_decrypt(token: str, private_key: jwk.JWK, options: DecryptOptions | None = None) -> DecryptResult:
    """
    Decrypt a compact JWE and verify its JWT claims set.

    Args:
        token: The serialized JWE.
        private_key: Private key matching the public key the token was encrypted for.
        options: Algorithm allow-lists and claim constraints.

    Returns:
        DecryptResult: The claims set and protected header.

    Raises:
        InvalidTokenFormat: If the token is not a JWE or does not carry a JSON object.
        DecryptionFailed: If the algorithm is not allowed or the key does not match.
        ClaimValidationFailed: If a claim is malformed or does not satisfy the options.

    """
    options = options or {}
    encrypted = jwe.JWE()
    try:
        encrypted.deserialize(token)
        header = dict(encrypted.jose_header)
    except (JWException, TypeError, ValueError) as err:
        msg = "Invalid JWE."
        raise InvalidTokenFormat(msg) from err

    _check_algorithm(header, "alg", options.get("key_management_algorithms"))
    _check_algorithm(header, "enc", options.get("content_encryption_algorithms"))

    try:
        encrypted.decrypt(private_key)
    except JWException as err:
        msg = "Decryption operation failed."
        raise DecryptionFailed(msg) from err

    try:
        payload = json_decode(encrypted.payload)
    except (TypeError, ValueError) as err:
        msg = "JWT Claims Set must be valid JSON."
        raise InvalidTokenFormat(msg) from err
    if not isinstance(payload, dict):
        msg = "JWT Claims Set must be a top-level JSON object."
        raise InvalidTokenFormat(msg)

    typ = options.get("typ")
    if typ is not None and header.get("typ") != typ:
        msg = 'Unexpected "typ" JWT header value.'
        raise ClaimValidationFailed(msg, "typ", "check_failed")

    _check_claim_types(payload)
    _verify_claims(token, private_key, payload, options)
    return DecryptResult(payload=payload, protected_header=header)
