"""Admin-secret checks for Hasura-style requests."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from typing import Union

HeaderValue = Union[str, Sequence[str]]


def _get_header(headers: Mapping[str, HeaderValue], name: str) -> str:
    for key, value in headers.items():
        if key.lower() == name.lower():
            return value if isinstance(value, str) else next(iter(value), "")
    return ""


def is_admin(hasura_admin_secret: str, headers: Mapping[str, HeaderValue]) -> bool:
    """True if the headers carry the admin secret and an admin or empty role."""
    return _get_header(headers, "X-Hasura-Admin-Secret") == hasura_admin_secret and (
        _get_header(headers, "X-Hasura-Role") in ("admin", "")
    )


class NeedsAdmin:
    """WSGI middleware refusing non-admin requests under a path prefix with 401."""

    def __init__(self, app: Callable, prefix_path: str, hasura_admin_secret: str) -> None:
        self.app = app
        self.prefix_path = prefix_path
        self.hasura_admin_secret = hasura_admin_secret

    def __call__(self, environ: dict, start_response: Callable) -> Iterable[bytes]:
        headers = {
            key[5:].replace("_", "-"): value
            for key, value in environ.items()
            if key.startswith("HTTP_")
        }
        if environ.get("PATH_INFO", "").startswith(self.prefix_path) and not is_admin(
            self.hasura_admin_secret, headers
        ):
            start_response("401 Unauthorized", [("Content-Length", "0")])
            return [b""]
        return self.app(environ, start_response)