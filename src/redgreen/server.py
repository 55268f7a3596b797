"""Result server: receives failure reports from spawned test processes."""

from __future__ import annotations

import json
import logging
import socket
import socketserver
import tempfile
import threading
import zlib
from dataclasses import dataclass, replace
from pathlib import Path

from redgreen.ledger import FailureLedger
from redgreen.logging import EventJournal, JournalEvent, sanitize_params, utc_timestamp
from redgreen.paths import to_project_relative
from redgreen.protocol import (
    MethodDispatchError,
    MethodRegistry,
    Request,
    encode_response,
    error_response,
    parse_request,
    require_int,
    require_string,
    success_response,
)

LOGGER = logging.getLogger(__name__)

TCP_HOST = "127.0.0.1"
TCP_PORT_BASE = 20000
TCP_PORT_SPAN = 20000

# pytest exit codes of a session that ran to the end: OK, TESTS_FAILED, NO_TESTS_COLLECTED.
COMPLETED_EXIT_STATUSES = frozenset({0, 1, 5})

ServerAddress = str | tuple[str, int]


def server_address(token: str) -> ServerAddress:
    """Derive the endpoint address from the daemon token (its process id)."""
    if hasattr(socket, "AF_UNIX"):
        return str(Path(tempfile.gettempdir()) / f"redgreen.{token}.sock")
    port = TCP_PORT_BASE + zlib.crc32(token.encode("utf-8")) % TCP_PORT_SPAN
    return (TCP_HOST, port)


class ServerAddressInUseError(Exception):
    """Raised when another live endpoint already owns the derived address."""

    def __init__(self, reason: str, hint: str) -> None:
        super().__init__(reason)
        self.reason = reason
        self.hint = hint


@dataclass(slots=True)
class RunProgress:
    """Session counters for one run id."""

    run_id: int
    started: int = 0
    finished: int = 0


class _RequestHandler(socketserver.StreamRequestHandler):
    """Serves one client connection: a JSON request per line, a JSON response per line."""

    def handle(self) -> None:
        result_server: ResultServer = self.server.result_server  # type: ignore[attr-defined]
        for raw_line in self.rfile:
            line = raw_line.decode("utf-8", errors="replace").strip()
            if not line:
                continue
            response = result_server.handle_json_line(line)
            self.wfile.write(encode_response(response).encode("utf-8"))
            self.wfile.flush()


class _TCPServer(socketserver.ThreadingTCPServer):
    daemon_threads = True
    allow_reuse_address = False


if hasattr(socketserver, "ThreadingUnixStreamServer"):

    class _UnixServer(socketserver.ThreadingUnixStreamServer):
        daemon_threads = True


class ResultServer:
    """Listener shared by every test process the daemon spawns."""

    def __init__(
        self,
        project_root: Path,
        ledger: FailureLedger,
        token: str,
        journal: EventJournal | None = None,
    ) -> None:
        self._project_root = project_root.resolve()
        self._ledger = ledger
        self._token = token
        self._address = server_address(token)
        self._journal = journal
        self._lock = threading.Lock()
        self._progress: dict[int, RunProgress] = {}
        self._server: socketserver.BaseServer | None = None
        self._thread: threading.Thread | None = None
        self._fallback_request_counter = 0
        self._registry = MethodRegistry()
        self._registry.register("start", self._start)
        self._registry.register("report_failure", self._report_failure)
        self._registry.register("report_error", self._report_error)
        self._registry.register("report_done", self._report_done)
        self._registry.register("ping", self._ping)

    @property
    def address(self) -> ServerAddress:
        return self._address

    @property
    def token(self) -> str:
        return self._token

    @property
    def is_running(self) -> bool:
        return self._server is not None

    def start(self) -> None:
        """Bind the endpoint and serve on a daemon thread. A running server is left alone."""
        if self._server is not None:
            return
        server = self._bind()
        server.result_server = self  # type: ignore[attr-defined]
        thread = threading.Thread(
            target=server.serve_forever,
            kwargs={"poll_interval": 0.1},
            name="redgreen-result-server",
            daemon=True,
        )
        self._server = server
        self._thread = thread
        thread.start()
        LOGGER.debug("Result server listening on %s", self._address)

    def stop(self) -> None:
        """Stop serving and release the address. Safe to call when not running."""
        server = self._server
        if server is None:
            return
        self._server = None
        server.shutdown()
        server.server_close()
        if self._thread is not None:
            self._thread.join(timeout=1.0)
            self._thread = None
        if isinstance(self._address, str):
            Path(self._address).unlink(missing_ok=True)
        LOGGER.debug("Result server stopped")

    def progress(self, run_id: int) -> RunProgress:
        """Return a copy of the session counters for run_id."""
        with self._lock:
            progress = self._progress.get(run_id)
            if progress is None:
                return RunProgress(run_id=run_id)
            return replace(progress)

    def handle_json_line(self, raw_line: str) -> dict[str, object]:
        """Handle a single JSON-line request."""
        try:
            payload = json.loads(raw_line)
        except json.JSONDecodeError:
            request_id = self.next_request_id()
            response = error_response(
                request_id=request_id,
                code="INVALID_JSON",
                message="Request must be valid JSON.",
            )
            self.log_request(
                request_id=request_id,
                method="invalid_json",
                params={"raw_line_length": len(raw_line)},
                response=response,
            )
            return response
        return self.handle_payload(payload)

    def handle_payload(self, payload: object) -> dict[str, object]:
        """Validate and dispatch a parsed payload."""
        parsed = parse_request(payload, self.next_request_id())
        if not isinstance(parsed, Request):
            request_id = parsed.get("request_id")
            self.log_request(
                request_id=request_id if isinstance(request_id, str) else "",
                method="invalid_request",
                params={},
                response=parsed,
            )
            return parsed

        request = parsed
        try:
            result = self._registry.dispatch(request.method, request.params)
        except MethodDispatchError as error:
            response = error_response(
                request_id=request.request_id,
                code=error.code,
                message=error.message,
            )
        except Exception:
            LOGGER.exception("Unhandled error while handling %s", request.method)
            response = error_response(
                request_id=request.request_id,
                code="INTERNAL_ERROR",
                message="Unhandled server error while executing method.",
            )
        else:
            response = success_response(request_id=request.request_id, result=result)
        self.log_request(
            request_id=request.request_id,
            method=request.method,
            params=request.params,
            response=response,
        )
        return response

    def next_request_id(self) -> str:
        """Generate fallback request IDs for invalid/missing IDs."""
        with self._lock:
            self._fallback_request_counter += 1
            return f"req-{self._fallback_request_counter:06d}"

    def log_request(
        self,
        request_id: str,
        method: str,
        params: dict[str, object],
        response: dict[str, object],
    ) -> None:
        """Journal one sanitized request event."""
        if self._journal is None:
            return
        error_payload = response.get("error")
        error_code: str | None = None
        if isinstance(error_payload, dict):
            code_value = error_payload.get("code")
            if isinstance(code_value, str):
                error_code = code_value
        event = JournalEvent(
            timestamp=utc_timestamp(),
            request_id=request_id,
            method=method,
            ok=bool(response.get("ok", False)),
            error_code=error_code,
            metadata=sanitize_params(params),
        )
        self._journal.append(event)

    def _bind(self) -> socketserver.BaseServer:
        address = self._address
        if isinstance(address, str):
            path = Path(address)
            if path.exists():
                if _socket_answers(path):
                    raise ServerAddressInUseError(
                        reason=f"Result server address already in use: {address}",
                        hint="Another redgreen daemon is probably running; stop it first.",
                    )
                path.unlink(missing_ok=True)
            try:
                return _UnixServer(address, _RequestHandler)
            except OSError as error:
                raise ServerAddressInUseError(
                    reason=f"Cannot bind result server at {address}: {error}",
                    hint="Check that the temporary directory is writable.",
                ) from error
        try:
            return _TCPServer(address, _RequestHandler)
        except OSError as error:
            raise ServerAddressInUseError(
                reason=f"Result server address already in use: {address[0]}:{address[1]}",
                hint="Another redgreen daemon is probably running; stop it first.",
            ) from error

    def _start(self, params: dict[str, object]) -> dict[str, object]:
        run_id = require_int(params, "run")
        with self._lock:
            progress = self._progress.get(run_id)
            if progress is None:
                # The first session of a run reports from a clean slate.
                self._ledger.clear()
                progress = RunProgress(run_id=run_id)
                self._progress = {run_id: progress}
            progress.started += 1
            session = progress.started
        LOGGER.debug("Test session %d started for run %d", session, run_id)
        return {"run": run_id, "session": session}

    def _report_failure(self, params: dict[str, object]) -> dict[str, object]:
        file = to_project_relative(self._project_root, require_string(params, "file"))
        class_name = require_string(params, "class_name", allow_empty=True)
        method_name = require_string(params, "method_name")
        self._ledger.record_failure(file, class_name, method_name)
        return {"file": file}

    def _report_error(self, params: dict[str, object]) -> dict[str, object]:
        file = to_project_relative(self._project_root, require_string(params, "file"))
        self._ledger.ensure_tracked(file)
        return {"file": file}

    def _report_done(self, params: dict[str, object]) -> dict[str, object]:
        run_id = require_int(params, "run")
        exit_status = require_int(params, "exitstatus")
        completed = exit_status in COMPLETED_EXIT_STATUSES
        if completed:
            with self._lock:
                progress = self._progress.get(run_id)
                if progress is not None:
                    progress.finished += 1
            LOGGER.debug("Test session finished for run %d", run_id)
        else:
            LOGGER.warning(
                "Test session for run %d was cut short with exit status %d", run_id, exit_status
            )
        return {
            "run": run_id,
            "failures": self._ledger.failure_count(),
            "completed": completed,
        }

    def _ping(self, _: dict[str, object]) -> dict[str, object]:
        return {"pong": True, "token": self._token}


def _socket_answers(path: Path) -> bool:
    """Return True when something accepts connections on the unix socket path."""
    try:
        with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as sock:
            sock.settimeout(0.5)
            sock.connect(str(path))
    except OSError:
        return False
    return True
