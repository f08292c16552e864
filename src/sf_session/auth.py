from collections.abc import Iterator, Mapping
from datetime import datetime, timezone
import typing
from urllib.parse import unquote

import httpx

from .logger import getLogger

LOGGER = getLogger("auth")


def parse_oauth_fragment(url: str) -> dict[str, str]:
    """
    Parse the `#key=value&key=value` fragment of an OAuth implicit-grant
    redirect URL into a dictionary of decoded values.

    A pair without `=` maps to an empty string and repeated keys keep the
    last value. A URL without a fragment yields an empty dictionary.
    """
    _, sep, fragment = url.partition("#")
    if not sep:
        LOGGER.debug("No OAuth fragment found in redirect URL")
        return {}
    values: dict[str, str] = {}
    for pair in fragment.split("&"):
        if not pair:
            continue
        key, _, value = pair.partition("=")
        values[unquote(key)] = unquote(value)
    return values


class OAuthCredentials(Mapping[str, str]):
    """Credentials granted by the OAuth redirect, keyed by fragment name."""

    def __init__(self, values: Mapping[str, str] | None = None, /, **overrides: str):
        self._values = {**(values or {}), **overrides}

    @classmethod
    def from_redirect(cls, url: str, instance_url: str | None = None):
        values = parse_oauth_fragment(url)
        if instance_url:
            values["instance_url"] = instance_url
        return cls(values)

    def __getitem__(self, key: str) -> str:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self):
        masked = {
            key: ("****" if key == "access_token" else value)
            for key, value in self._values.items()
        }
        return f"{type(self).__name__}({masked!r})"

    @property
    def access_token(self) -> str | None:
        return self._values.get("access_token")

    @property
    def token_type(self) -> str | None:
        return self._values.get("token_type")

    @property
    def instance_url(self) -> str:
        return self._values.get("instance_url", "")

    @property
    def issued_at(self) -> datetime | None:
        # milliseconds since the epoch
        if (issued := self._values.get("issued_at", "")).isdigit():
            return datetime.fromtimestamp(int(issued) / 1000, tz=timezone.utc)
        return None

    def authorization(self) -> str:
        return f"{self.token_type} {self.access_token}"

    def update(self, **values: str):
        self._values.update(values)


class OAuthFragmentAuth(httpx.Auth):
    """
    Sets the `Authorization` header from the session credentials.

    The header is rebuilt on every request, so changes made to the
    credentials take effect on the next call.
    """

    credentials: OAuthCredentials

    def __init__(self, credentials: OAuthCredentials):
        self.credentials = credentials

    def auth_flow(
        self, request: httpx.Request
    ) -> typing.Generator[httpx.Request, httpx.Response, None]:
        request.headers["Authorization"] = self.credentials.authorization()
        yield request
