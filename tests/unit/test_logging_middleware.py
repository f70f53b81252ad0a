import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.testclient import TestClient

from roombook.logging_middleware import add_audit_middleware, build_audit_logger


def read_log(tmp_path, service: str) -> str:
    for handler in logging.getLogger(f"audit.{service}").handlers:
        handler.flush()
    return (tmp_path / f"{service}.log").read_text()


def test_requests_logged_with_identity_and_level(tmp_path, monkeypatch):
    monkeypatch.setattr("roombook.logging_middleware._log_dir", lambda: tmp_path)
    app = FastAPI()
    add_audit_middleware(app, "audit-test")

    @app.get("/rooms")
    def rooms(request: Request):
        request.state.identity_id = 5
        return []

    @app.get("/missing")
    def missing():
        raise HTTPException(status_code=404, detail="nope")

    client = TestClient(app)
    client.get("/rooms", params={"date": "2030-01-08"})
    client.get("/missing")

    lines = read_log(tmp_path, "audit-test").splitlines()
    assert "INFO" in lines[0]
    assert "GET /rooms?date=2030-01-08 | status=200 | identity=5" in lines[0]
    assert "WARNING" in lines[1]
    assert "identity=anonymous" in lines[1]


def test_core_events_share_service_log(tmp_path, monkeypatch):
    monkeypatch.setattr("roombook.logging_middleware._log_dir", lambda: tmp_path)
    build_audit_logger("core-test")

    logging.getLogger("roombook.lifecycle").info("Reservation %s confirmed", 12)

    assert "roombook.lifecycle | Reservation 12 confirmed" in read_log(tmp_path, "core-test")
