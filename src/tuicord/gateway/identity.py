"""Client metadata sent with identify and as the super-properties header."""

from __future__ import annotations

import base64

import msgspec

DEFAULT_BUILD_NUMBER = 307_749
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class ClientProperties(msgspec.Struct, kw_only=True):
    os: str = "Linux"
    browser: str = "Chrome"
    device: str = ""
    system_locale: str = "en-US"
    browser_user_agent: str = DEFAULT_USER_AGENT
    browser_version: str = "120.0.0.0"
    os_version: str = ""
    referrer: str = ""
    referring_domain: str = ""
    referrer_current: str = ""
    referring_domain_current: str = ""
    release_channel: str = "stable"
    client_build_number: int = DEFAULT_BUILD_NUMBER
    client_event_source: str | None = None


class ClientIdentity:
    """Holds the client properties and the cached base64 header built from them."""

    __slots__ = ("_properties", "_header")

    def __init__(self, properties: ClientProperties | None = None) -> None:
        self._properties = properties or ClientProperties()
        self._header = self._encode()

    def _encode(self) -> str:
        return base64.b64encode(msgspec.json.encode(self._properties)).decode("ascii")

    def update_build_number(self, build_number: int) -> None:
        if self._properties.client_build_number == build_number:
            return
        self._properties = msgspec.structs.replace(
            self._properties, client_build_number=build_number
        )
        self._header = self._encode()

    def properties(self) -> ClientProperties:
        return msgspec.structs.replace(self._properties)

    def header_value(self) -> str:
        return self._header
