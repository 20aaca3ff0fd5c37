"""Socket seam: the gateway client talks to a `Transport`, never to websockets."""

from __future__ import annotations

import contextlib
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from .errors import TransportError

# Close codes sent by the server that carry protocol meaning.
CLOSE_UNKNOWN_ERROR = 4000
CLOSE_AUTHENTICATION_FAILED = 4004
CLOSE_INVALID_SEQ = 4007
CLOSE_SESSION_TIMED_OUT = 4009

# Closing with a 1000/1001 code invalidates the session server-side.
CLOSE_NORMAL = 1000
CLOSE_RESUMABLE = 4900


class Transport(Protocol):
    async def send(self, data: str) -> None: ...

    async def receive(self) -> str | bytes: ...

    async def close(self, code: int = CLOSE_NORMAL) -> None: ...


type Connector = Callable[[str], Awaitable[Transport]]


class WebsocketTransport:
    def __init__(self, connection: websockets.ClientConnection) -> None:
        self._connection = connection

    async def send(self, data: str) -> None:
        try:
            await self._connection.send(data)
        except ConnectionClosed as exc:
            raise TransportError(
                f"send on closed socket: {exc}", code=_close_code(exc)
            ) from exc
        except (WebSocketException, OSError) as exc:
            raise TransportError(f"send failed: {exc}") from exc

    async def receive(self) -> str | bytes:
        try:
            return await self._connection.recv()
        except ConnectionClosed as exc:
            raise TransportError(
                f"socket closed: {exc}", code=_close_code(exc)
            ) from exc
        except (WebSocketException, OSError) as exc:
            raise TransportError(f"receive failed: {exc}") from exc

    async def close(self, code: int = CLOSE_NORMAL) -> None:
        with contextlib.suppress(WebSocketException, OSError):
            await self._connection.close(code=code)


def _close_code(exc: ConnectionClosed) -> int | None:
    if exc.rcvd is not None:
        return exc.rcvd.code
    return None


async def connect_websocket(
    url: str, *, user_agent: str | None = None
) -> WebsocketTransport:
    kwargs: dict[str, Any] = {"ping_interval": None, "max_size": None}
    if user_agent is not None:
        kwargs["user_agent_header"] = user_agent
    try:
        connection = await websockets.connect(url, **kwargs)
    except (WebSocketException, OSError) as exc:
        raise TransportError(f"connect to {url} failed: {exc}") from exc
    return WebsocketTransport(connection)
