"""Client side of the result channel, used by test processes."""

from __future__ import annotations

import itertools
import json
import socket
from dataclasses import dataclass
from typing import BinaryIO

from redgreen.protocol import encode_request
from redgreen.server import server_address

DEFAULT_TIMEOUT_SECONDS = 10.0


@dataclass(slots=True, frozen=True)
class RpcError(Exception):
    """Error envelope returned by the result server."""

    code: str
    message: str


class ResultClient:
    """Line-oriented connection to the daemon's result server."""

    def __init__(self, token: str, timeout: float = DEFAULT_TIMEOUT_SECONDS) -> None:
        self._token = token
        self._timeout = timeout
        self._ids = itertools.count(1)
        self._sock: socket.socket | None = None
        self._reader: BinaryIO | None = None

    @property
    def connected(self) -> bool:
        return self._sock is not None

    def connect(self) -> tuple[socket.socket, BinaryIO]:
        """Open the connection once and return the socket with its line reader."""
        if self._sock is not None and self._reader is not None:
            return self._sock, self._reader
        address = server_address(self._token)
        family = socket.AF_UNIX if isinstance(address, str) else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        sock.settimeout(self._timeout)
        try:
            sock.connect(address)
        except OSError:
            sock.close()
            raise
        reader = sock.makefile("rb")
        self._sock = sock
        self._reader = reader
        return sock, reader

    def call(self, method: str, **params: object) -> dict[str, object]:
        """Send one request and return the result payload, raising RpcError on failure."""
        sock, reader = self.connect()
        request_id = f"{self._token}-{next(self._ids)}"
        sock.sendall(encode_request(request_id, method, dict(params)).encode("utf-8"))
        line = reader.readline()
        if not line:
            self.close()
            raise ConnectionError("Result server closed the connection.")
        response = json.loads(line.decode("utf-8"))
        if not response.get("ok", False):
            error = response.get("error") or {}
            raise RpcError(
                code=str(error.get("code", "UNKNOWN")),
                message=str(error.get("message", "")),
            )
        result = response.get("result", {})
        return result if isinstance(result, dict) else {}

    def close(self) -> None:
        if self._reader is not None:
            self._reader.close()
            self._reader = None
        if self._sock is not None:
            self._sock.close()
            self._sock = None

    def __enter__(self) -> ResultClient:
        self.connect()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
