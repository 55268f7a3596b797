from __future__ import annotations

from pathlib import Path

from redgreen.ledger import FailureLedger
from redgreen.server import ResultServer


def _server(tmp_path: Path, ledger: FailureLedger | None = None) -> ResultServer:
    return ResultServer(tmp_path, ledger if ledger is not None else FailureLedger(), token="t")


def test_malformed_json_returns_invalid_json_error(tmp_path: Path) -> None:
    response = _server(tmp_path).handle_json_line("{not-json")

    assert response["ok"] is False
    assert response["error"] == {
        "code": "INVALID_JSON",
        "message": "Request must be valid JSON.",
    }
    assert str(response["request_id"]).startswith("req-")


def test_non_object_request_is_invalid(tmp_path: Path) -> None:
    response = _server(tmp_path).handle_payload(["start"])

    assert response["ok"] is False
    assert response["error"]["code"] == "INVALID_REQUEST"


def test_unknown_method_returns_explicit_error(tmp_path: Path) -> None:
    response = _server(tmp_path).handle_payload(
        {"id": "abc-123", "method": "report_success", "params": {}}
    )

    assert response["ok"] is False
    assert response["request_id"] == "abc-123"
    assert response["error"] == {
        "code": "UNKNOWN_METHOD",
        "message": "Unknown method: report_success",
    }


def test_missing_params_return_invalid_params(tmp_path: Path) -> None:
    server = _server(tmp_path)

    response = server.handle_payload({"id": 7, "method": "report_failure", "params": {"file": "a"}})

    assert response["ok"] is False
    assert response["request_id"] == "7"
    assert response["error"] == {
        "code": "INVALID_PARAMS",
        "message": "params.class_name must be a string.",
    }


def test_non_object_params_return_invalid_params(tmp_path: Path) -> None:
    response = _server(tmp_path).handle_payload({"id": "x", "method": "start", "params": [1]})

    assert response["error"]["code"] == "INVALID_PARAMS"


def test_ping_answers_with_token(tmp_path: Path) -> None:
    response = _server(tmp_path).handle_payload({"id": "p", "method": "ping"})

    assert response == {"request_id": "p", "ok": True, "result": {"pong": True, "token": "t"}}
