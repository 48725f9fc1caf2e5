"""
Plaintext cookie collection for a single request/response cycle.

Provides `CookieMap`, a read-only mapping over the request's ``Cookie`` header that stages
``Set-Cookie`` headers for the response.
"""

import re
from collections.abc import Iterable, Iterator, Mapping, MutableSequence
from datetime import UTC, datetime
from email.utils import format_datetime
from typing import Literal, Protocol, TypedDict
from urllib.parse import quote, unquote

SameSite = Literal["Strict", "Lax", "None"]
HeaderList = MutableSequence[tuple[str, str]]

# RFC 6265 cookie-name: an HTTP token.
_COOKIE_NAME_RE = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")
# Characters allowed unescaped in a cookie-value, minus the percent sign used for escaping.
_COOKIE_VALUE_SAFE = "!#$&'()*+-./:<=>?@[]^_`{|}~"
_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


class CookieOptions(TypedDict, total=False):
    """Attributes of a staged ``Set-Cookie`` header."""

    path: str
    domain: str
    expires: datetime
    max_age: int
    http_only: bool
    secure: bool
    same_site: SameSite
    partitioned: bool
    overwrite: bool


DEFAULT_COOKIE_OPTIONS: CookieOptions = {"path": "/", "http_only": True}


class CookieCollection(Protocol):
    """The capabilities an encrypted cookie map needs from the plaintext collection it wraps."""

    def get(self, key: str) -> str | None:
        """Return the request value of a cookie, or None if absent."""

    def set(self, key: str, value: str | None, options: CookieOptions | None = None) -> None:
        """Stage a cookie on the response. A None value stages its removal."""

    def items(self) -> Iterable[tuple[str, str]]:
        """Return the ``(name, value)`` pairs visible on the request."""


def parse_cookies(raw_cookie: str | None) -> dict[str, str]:
    """
    Parse a raw ``Cookie`` header into a dictionary.

    Malformed parts are ignored and a repeated name keeps its last value.

    Returns:
        dict[str, str]: The parsed cookies.

    """
    cookies: dict[str, str] = {}
    if not raw_cookie:
        return cookies

    for part_raw in raw_cookie.split(";"):
        part = part_raw.strip()
        if not part:
            continue
        name, sep, value = part.partition("=")
        name = name.strip()
        if not sep or not name:
            continue
        cookies[unquote(name)] = unquote(value.strip().strip('"'))
    return cookies


def _header_value(headers: Mapping[str, str] | None, name: str) -> str | None:
    if not headers:
        return None
    lowered = name.lower()
    for key, value in headers.items():
        if key.lower() == lowered:
            return value
    return None


def serialize_cookie(name: str, value: str, options: CookieOptions) -> str:
    """
    Render a ``Set-Cookie`` header value.

    Returns:
        str: The header value, e.g. ``"name=value; Path=/; HttpOnly"``.

    Raises:
        ValueError: If the name is not a valid cookie name.

    """
    if not _COOKIE_NAME_RE.match(name):
        msg = f"Invalid cookie name: {name!r}."
        raise ValueError(msg)

    parts = [f"{name}={quote(value, safe=_COOKIE_VALUE_SAFE)}"]
    if path := options.get("path"):
        parts.append(f"Path={path}")
    if domain := options.get("domain"):
        parts.append(f"Domain={domain}")
    if (expires := options.get("expires")) is not None:
        parts.append(f"Expires={format_datetime(expires.astimezone(UTC), usegmt=True)}")
    if (max_age := options.get("max_age")) is not None:
        parts.append(f"Max-Age={max_age}")
    if same_site := options.get("same_site"):
        parts.append(f"SameSite={same_site}")
    if options.get("secure"):
        parts.append("Secure")
    if options.get("http_only"):
        parts.append("HttpOnly")
    if options.get("partitioned"):
        parts.append("Partitioned")
    return "; ".join(parts)


class CookieMap(Mapping[str, str]):
    """
    Manage the cookies of one request/response cycle.

    Reading returns the cookies sent with the request. Writing stages ``Set-Cookie`` headers
    and never changes what is read.
    """

    def __init__(
        self,
        request_headers: Mapping[str, str] | None = None,
        *,
        response: HeaderList | None = None,
        options: CookieOptions | None = None,
    ) -> None:
        """
        Initialize the CookieMap.

        Args:
            request_headers: Headers of the incoming request. The ``Cookie`` header is looked up
                case-insensitively.
            response: Header list of the outgoing response. Staged cookies are appended to it as
                ``("set-cookie", value)`` pairs.
            options: Default attributes for every staged cookie.

        """
        self._cookies = parse_cookies(_header_value(request_headers, "cookie"))
        self._response = response
        self._options: CookieOptions = {**DEFAULT_COOKIE_OPTIONS, **(options or {})}
        self._staged: list[tuple[str, str]] = []

    def __repr__(self) -> str:
        """
        Return a string representation of the CookieMap.

        Returns:
            str: The request cookies.

        """
        return f"<CookieMap: {self._cookies!r}>"

    def __getitem__(self, k: str) -> str:
        """
        Get the request value of a cookie by name.

        Raises:
            KeyError: If the cookie is not present.

        """
        try:
            return self._cookies[k]
        except KeyError as err:
            msg = f"Cookie '{k}' not found."
            raise KeyError(msg) from err

    def __iter__(self) -> Iterator[str]:
        """Iterate over the names of the request cookies."""
        return iter(self._cookies)

    def __len__(self) -> int:
        """Return the number of request cookies."""
        return len(self._cookies)

    def set(self, key: str, value: str | None, options: CookieOptions | None = None) -> None:
        """
        Stage a cookie on the response.

        Args:
            key: Cookie name.
            value: Cookie value. None stages a removal cookie.
            options: Attributes overriding the map defaults for this cookie.

        Raises:
            ValueError: If the name is not a valid cookie name.

        """
        merged: CookieOptions = {**self._options, **(options or {})}
        if value is None:
            value = ""
            merged["expires"] = _EPOCH
            merged.pop("max_age", None)

        header = serialize_cookie(key, value, merged)
        if merged.get("overwrite"):
            self._remove_staged(key)
        self._staged.append((key, header))
        if self._response is not None:
            self._response.append(("set-cookie", header))

    def delete(self, key: str, options: CookieOptions | None = None) -> None:
        """Stage the removal of a cookie."""
        self.set(key, None, options)

    def set_cookie_headers(self) -> list[str]:
        """Return the staged ``Set-Cookie`` header values in the order they were set."""
        return [header for _, header in self._staged]

    def _remove_staged(self, key: str) -> None:
        removed = {header for name, header in self._staged if name == key}
        if not removed:
            return
        self._staged = [(name, header) for name, header in self._staged if name != key]
        if self._response is not None:
            self._response[:] = [
                (name, value)
                for name, value in self._response
                if not (name.lower() == "set-cookie" and value in removed)
            ]


class _StagesCookies(Protocol):
    def set_cookie_headers(self) -> list[str]: ...


def merge_headers(*sources: Mapping[str, str] | _StagesCookies) -> list[tuple[str, str]]:
    """
    Combine plain header mappings and cookie maps into one response header list.

    Returns:
        list[tuple[str, str]]: Header pairs, with one ``set-cookie`` pair per staged cookie.

    """
    headers: list[tuple[str, str]] = []
    for source in sources:
        if hasattr(source, "set_cookie_headers"):
            headers.extend(("set-cookie", value) for value in source.set_cookie_headers())
        else:
            headers.extend(source.items())
    return headers
