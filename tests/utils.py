from jwe_cookie_map import EncryptedCookieMap, merge_headers


def next_request_headers(cookies: EncryptedCookieMap) -> dict[str, str]:
    """Build the headers a browser would send back after receiving the staged cookies."""
    pairs = [value.split(";", 1)[0] for name, value in merge_headers(cookies.cookies) if name == "set-cookie"]
    return {"Cookie": "; ".join(pairs)}
