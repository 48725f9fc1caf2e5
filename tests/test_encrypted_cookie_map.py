import json
import logging
from collections.abc import Iterable
from datetime import UTC, datetime

import pytest
from jwe_cookie_map import (
    ALGORITHM,
    ClaimValidationFailed,
    CookieOptions,
    DecryptionFailed,
    DecryptOptions,
    EncryptedCookieMap,
    EncryptionConfiguration,
    EncryptionError,
    InvalidTokenFormat,
    KeyPair,
    TokenBuilder,
    default_encrypt_hook,
    jwt_decrypt,
    new_cookie_map_with_key_pair,
)

from tests.utils import next_request_headers


async def test_encrypted_and_decrypted_payload_stay_the_same(fresh_default_configuration: EncryptionConfiguration):
    new_cookies = EncryptedCookieMap({})
    assert new_cookies.configuration is fresh_default_configuration
    payload = {"foo": "bar"}
    await new_cookies.set_encrypted("key", payload)

    with_cookies = EncryptedCookieMap(next_request_headers(new_cookies))
    assert await with_cookies.get_decrypted("key") == payload


async def test_encryption_adds_configured_claims(configuration: EncryptionConfiguration):
    now = int(datetime.now(tz=UTC).timestamp())
    configuration.encrypt_hook = lambda token: default_encrypt_hook(token).set_issued_at(now)
    new_cookies = EncryptedCookieMap({}, configuration=configuration)
    payload = {"foo": "bar"}
    await new_cookies.set_encrypted("key", payload)

    with_cookies = EncryptedCookieMap(next_request_headers(new_cookies), configuration=configuration)
    assert await with_cookies.get_decrypted("key") == {**payload, "iat": now}


async def test_call_site_hook_runs_after_configuration_hook(configuration: EncryptionConfiguration):
    calls: list[str] = []

    def configuration_hook(token: TokenBuilder) -> TokenBuilder:
        calls.append("configuration")
        return default_encrypt_hook(token).set_issuer("configuration")

    def call_site_hook(token: TokenBuilder) -> TokenBuilder:
        calls.append("call_site")
        assert token.protected_header["alg"] == ALGORITHM
        return token.set_issuer("call-site").set_subject("user-1")

    configuration.encrypt_hook = configuration_hook
    cookies = EncryptedCookieMap({}, configuration=configuration)
    await cookies.set_encrypted("key", {"foo": "bar"}, encrypt_hook=call_site_hook)

    assert calls == ["configuration", "call_site"]
    with_cookies = EncryptedCookieMap(next_request_headers(cookies), configuration=configuration)
    decrypted = await with_cookies.get_decrypted("key")
    assert decrypted == {"foo": "bar", "iss": "call-site", "sub": "user-1"}


async def test_decrypt_with_new_key_pair_fails(configuration: EncryptionConfiguration):
    new_cookies = EncryptedCookieMap({}, configuration=configuration)
    await new_cookies.set_encrypted("key", {"foo": "bar"})

    with_cookies = await new_cookie_map_with_key_pair(next_request_headers(new_cookies))
    assert with_cookies.configuration is not configuration
    with pytest.raises(DecryptionFailed):
        await with_cookies.get_decrypted("key")


async def test_decrypt_non_encrypted_value_fails(configuration: EncryptionConfiguration):
    new_cookies = EncryptedCookieMap({}, configuration=configuration)
    new_cookies.set("key", json.dumps({"foo": "bar"}))

    with_cookies = EncryptedCookieMap(next_request_headers(new_cookies), configuration=configuration)
    assert with_cookies.get("key") == '{"foo": "bar"}'
    with pytest.raises(InvalidTokenFormat):
        await with_cookies.get_decrypted("key")


async def test_decrypt_plain_string_fails(configuration: EncryptionConfiguration):
    cookies = EncryptedCookieMap({"cookie": "key=hello"}, configuration=configuration)
    with pytest.raises(InvalidTokenFormat):
        await cookies.get_decrypted("key")


async def test_get_decrypted_absent_key(configuration: EncryptionConfiguration):
    cookies = EncryptedCookieMap({"cookie": "other=value"}, configuration=configuration)
    assert await cookies.get_decrypted("missing") is None


async def test_set_multiple_encrypted_and_decrypted_entries(configuration: EncryptionConfiguration):
    cookies = EncryptedCookieMap({}, configuration=configuration)
    await cookies.set_multiple_encrypted({"a": {"x": 1}, "b": {"y": 2}})

    with_cookies = EncryptedCookieMap(next_request_headers(cookies), configuration=configuration)
    assert sorted(with_cookies) == ["a", "b"]
    assert await with_cookies.decrypted_entries() == {"a": {"x": 1}, "b": {"y": 2}}


async def test_decrypted_entries_is_all_or_nothing(configuration: EncryptionConfiguration):
    cookies = EncryptedCookieMap({}, configuration=configuration)
    await cookies.set_encrypted("a", {"x": 1})
    headers = next_request_headers(cookies)
    headers["Cookie"] += "; plain=hello"

    with pytest.raises(InvalidTokenFormat):
        await EncryptedCookieMap(headers, configuration=configuration).decrypted_entries()


async def test_set_multiple_encrypted_propagates_failure(configuration: EncryptionConfiguration):
    cookies = EncryptedCookieMap({}, configuration=configuration)
    with pytest.raises(EncryptionError):
        await cookies.set_multiple_encrypted({"a": {"x": 1}, "b": {"when": datetime.now(tz=UTC)}})
    assert all(not header.startswith("b=") for header in cookies.cookies.set_cookie_headers())


async def test_set_multiple_encrypted_attempts_every_entry(
    configuration: EncryptionConfiguration, caplog: pytest.LogCaptureFixture
):
    cookies = EncryptedCookieMap({}, configuration=configuration)
    payloads = {"a": {"when": datetime.now(tz=UTC)}, "b": {"x": 1}, "c": {"values": {1, 2}}}
    with caplog.at_level(logging.WARNING, logger="jwe_cookie_map"), pytest.raises(EncryptionError):
        await cookies.set_multiple_encrypted(payloads)

    assert [header.split("=", 1)[0] for header in cookies.cookies.set_cookie_headers()] == ["b"]
    assert len(caplog.records) == 1
    assert "Also failed" in caplog.records[0].getMessage()


async def test_failed_encryption_stages_nothing(configuration: EncryptionConfiguration):
    configuration.encrypt_hook = lambda token: token
    cookies = EncryptedCookieMap({}, configuration=configuration)
    with pytest.raises(EncryptionError, match='"alg" is missing'):
        await cookies.set_encrypted("key", {"foo": "bar"})
    assert cookies.cookies.set_cookie_headers() == []


async def test_cookie_options_precedence(configuration: EncryptionConfiguration):
    configuration.default_cookie_options = {"secure": True, "max_age": 60, "domain": "example.com"}
    cookies = EncryptedCookieMap({}, configuration=configuration, options={"max_age": 120, "same_site": "Strict"})
    await cookies.set_encrypted("key", {"foo": "bar"}, {"path": "/app", "domain": "example.org"})

    [header] = cookies.cookies.set_cookie_headers()
    attributes = header.split("; ")[1:]
    assert attributes == ["Path=/app", "Domain=example.org", "Max-Age=120", "SameSite=Strict", "Secure", "HttpOnly"]


async def test_decrypt_options_merge(configuration: EncryptionConfiguration):
    configuration.decrypt_options = {"issuer": "a", "key_management_algorithms": [ALGORITHM]}
    cookies = EncryptedCookieMap({}, configuration=configuration)
    await cookies.set_encrypted("key", {"foo": "bar"}, encrypt_hook=lambda token: token.set_issuer("b"))

    with_cookies = EncryptedCookieMap(next_request_headers(cookies), configuration=configuration)
    with pytest.raises(ClaimValidationFailed, match='"iss"') as exc_info:
        await with_cookies.get_decrypted("key")
    assert exc_info.value.claim == "iss"

    assert await with_cookies.get_decrypted("key", {"issuer": "b"}) == {"foo": "bar", "iss": "b"}
    with pytest.raises(DecryptionFailed, match="not allowed"):
        await with_cookies.get_decrypted("key", {"issuer": "b", "key_management_algorithms": ["RSA-OAEP"]})
    assert configuration.decrypt_options == {"issuer": "a", "key_management_algorithms": [ALGORITHM]}


async def test_reserved_claims_round_trip(configuration: EncryptionConfiguration):
    configuration.decrypt_options = {"audience": "you", "issuer": "me", "max_token_age": 60}
    issued = int(datetime.now(tz=UTC).timestamp()) - 10
    payload = {"foo": "bar", "exp": issued + 3600, "nbf": issued, "iat": issued, "aud": ["you", "x"], "iss": "me"}
    cookies = EncryptedCookieMap({}, configuration=configuration)
    await cookies.set_encrypted("key", payload)

    with_cookies = EncryptedCookieMap(next_request_headers(cookies), configuration=configuration)
    assert await with_cookies.get_decrypted("key") == payload


@pytest.mark.parametrize(
    ("payload", "decrypt_options", "claim"),
    [
        ({"exp": None}, {}, "exp"),
        ({"nbf": None}, {}, "nbf"),
        ({"iat": None}, {"max_token_age": 60}, "iat"),
        ({"aud": 5}, {}, "aud"),
        ({"aud": 5}, {"audience": "you"}, "aud"),
    ],
)
async def test_malformed_registered_claims(
    configuration: EncryptionConfiguration, payload: dict, decrypt_options: DecryptOptions, claim: str
):
    cookies = EncryptedCookieMap({}, configuration=configuration)
    await cookies.set_encrypted("key", payload)

    with_cookies = EncryptedCookieMap(next_request_headers(cookies), configuration=configuration)
    with pytest.raises(ClaimValidationFailed, match=f'"{claim}"') as exc_info:
        await with_cookies.get_decrypted("key", decrypt_options)
    assert exc_info.value.reason == "invalid"
    with pytest.raises(ClaimValidationFailed):
        await with_cookies.decrypted_entries()


async def test_set_encrypted_appends_to_response(configuration: EncryptionConfiguration):
    response: list[tuple[str, str]] = [("content-type", "text/plain")]
    cookies = EncryptedCookieMap({}, response=response, configuration=configuration)
    await cookies.set_encrypted("key", {"foo": "bar"})

    assert response[0] == ("content-type", "text/plain")
    name, value = response[1]
    assert name == "set-cookie"
    assert value.startswith("key=")
    token = value.split(";", 1)[0].removeprefix("key=")
    assert token.count(".") == 4
    assert jwt_decrypt(token, configuration.private_key).payload == {"foo": "bar"}


def test_plain_cookies_are_delegated(configuration: EncryptionConfiguration):
    cookies = EncryptedCookieMap({"Cookie": "foo=bar; bar=baz;"}, configuration=configuration)
    assert cookies.get("foo") == "bar"
    assert cookies["bar"] == "baz"
    assert dict(cookies) == {"foo": "bar", "bar": "baz"}
    assert len(cookies) == 2
    assert cookies.get("missing", "default") == "default"
    with pytest.raises(KeyError, match="missing"):
        cookies["missing"]

    cookies.set("session", "1234567", {"secure": True})
    assert cookies.get("session") is None
    assert cookies.cookies.set_cookie_headers() == ["session=1234567; Path=/; Secure; HttpOnly"]

    cookies.delete("foo")
    assert cookies.cookies.set_cookie_headers()[-1].startswith("foo=; Path=/; Expires=Thu, 01 Jan 1970 00:00:00 GMT")


class DictCookies:
    def __init__(self, cookies: dict[str, str]) -> None:
        self.cookies = cookies
        self.options: dict[str, CookieOptions | None] = {}

    def get(self, key: str) -> str | None:
        return self.cookies.get(key)

    def set(self, key: str, value: str | None, options: CookieOptions | None = None) -> None:
        if value is None:
            self.cookies.pop(key, None)
        else:
            self.cookies[key] = value
        self.options[key] = options

    def items(self) -> Iterable[tuple[str, str]]:
        return self.cookies.items()


async def test_wraps_any_cookie_collection(key_pair: KeyPair):
    configuration = EncryptionConfiguration.from_key_pair(key_pair, default_cookie_options={"max_age": 10})
    store = DictCookies({})
    cookies = EncryptedCookieMap(configuration=configuration, cookies=store)
    await cookies.set_encrypted("key", {"foo": "bar"})

    assert cookies.cookies is store
    assert store.options == {"key": {"max_age": 10}}
    assert await cookies.get_decrypted("key") == {"foo": "bar"}
    assert await cookies.decrypted_entries() == {"key": {"foo": "bar"}}
    assert list(cookies) == ["key"]


async def test_new_cookie_map_with_key_pair_defaults():
    cookies = await new_cookie_map_with_key_pair()
    assert len(cookies) == 0
    await cookies.set_encrypted("key", {"foo": "bar"})

    with_cookies = EncryptedCookieMap(next_request_headers(cookies), configuration=cookies.configuration)
    assert await with_cookies.get_decrypted("key") == {"foo": "bar"}
