"""
HTTP endpoints: analytics, security export, auth and contact.
"""

import dataclasses
import json
from datetime import timedelta

from fastapi.testclient import TestClient

from sentinel.main import create_app
from sentinel.models import utcnow
from sentinel.security.counter_store import InMemoryCounterStore
from sentinel.services.email_service import SendResult


def _auth(token):
    return {"Authorization": f"Bearer {token}"}


def _threat(ip, minutes_ago=1):
    return {
        "ip": ip, "timestamp": utcnow() - timedelta(minutes=minutes_ago), "requestCount": 120,
        "timeWindow": 60, "paths": ["/"], "blocked": True, "kind": "burst",
    }


# Analytics

def test_analytics_requires_auth(client):
    assert client.get("/api/analytics").status_code == 401
    assert client.get("/api/analytics/real-time").status_code == 401
    assert client.get("/api/analytics/security").status_code == 401


def test_analytics_snapshot(client, admin_token):
    response = client.get("/api/analytics", params={"timeRange": "7d"}, headers=_auth(admin_token))
    assert response.status_code == 200
    body = response.json()
    assert body["timeRange"] == "7d"
    assert body["totalVisits"] == 0
    assert body["averageVisitsPerVisitor"] == 0


def test_analytics_with_session_cookie(client, admin_token):
    client.cookies.set("auth-token", admin_token)
    response = client.get("/api/analytics/real-time")
    assert response.status_code == 200
    assert response.json()["activeVisitors"] == 0


def test_analytics_rejects_unknown_range(client, admin_token):
    response = client.get("/api/analytics", params={"timeRange": "90d"}, headers=_auth(admin_token))
    assert response.status_code == 400


def test_analytics_read_failure_is_500(client, fake_db, admin_token):
    fake_db.visits.fail = True
    response = client.get("/api/analytics", headers=_auth(admin_token))
    assert response.status_code == 500
    assert response.json()["detail"] == "Failed to fetch analytics"


def test_expired_token_is_rejected(client, settings):
    import jwt

    now = utcnow()
    token = jwt.encode({"sub": "admin", "iat": now - timedelta(days=2), "exp": now - timedelta(days=1)},
                       settings.jwt_secret, algorithm="HS256")
    assert client.get("/api/analytics", headers=_auth(token)).status_code == 401


# Visit log endpoint

def test_log_visit(client, fake_db):
    response = client.post("/api/analytics/log", json={
        "path": "/blog/post", "method": "GET",
        "userAgent": "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_0) Firefox/120.0",
    })
    assert response.status_code == 200
    assert response.json() == {"success": True}

    doc = fake_db.visits.documents[-1]
    assert doc["ip"] == "testclient"
    assert doc["path"] == "/blog/post"
    assert doc["browser"] == "Firefox"
    assert doc["os"] == "MacOS"


def test_log_visit_ignores_reported_ip_from_untrusted_peer(client, fake_db):
    client.post("/api/analytics/log", json={"path": "/", "method": "GET", "ip": "198.51.100.1"})
    assert fake_db.visits.documents[-1]["ip"] == "testclient"


def test_log_visit_reported_ip_from_trusted_peer(settings, fake_db):
    trusted = dataclasses.replace(settings, trusted_log_sources=["testclient"])
    with TestClient(create_app(trusted, database=fake_db, counter_store=InMemoryCounterStore())) as client:
        client.post("/api/analytics/log", json={"path": "/", "method": "GET", "ip": "198.51.100.1"})

    assert fake_db.visits.documents[-1]["ip"] == "198.51.100.1"


def test_log_visit_rejects_non_string_fields(client, fake_db):
    response = client.post("/api/analytics/log", json={"path": "/", "method": "GET", "userAgent": 123})
    assert response.status_code == 400
    assert response.json()["success"] is False
    response = client.post("/api/analytics/log", json={"path": ["/"], "method": "GET"})
    assert response.status_code == 400
    assert fake_db.visits.documents == []


def test_log_visit_rejects_large_body(client, fake_db):
    payload = json.dumps({"path": "/", "method": "GET", "padding": "x" * 11_000})
    response = client.post("/api/analytics/log", content=payload, headers={"Content-Type": "application/json"})
    assert response.status_code == 413
    assert response.json()["success"] is False
    assert fake_db.visits.documents == []


def test_log_visit_rejects_large_chunked_body(client, fake_db):
    def chunks():
        yield b'{"path": "/", "method": "GET", "padding": "'
        for _ in range(20):
            yield b"x" * 1024
        yield b'"}'

    response = client.post("/api/analytics/log", content=chunks(), headers={"Content-Type": "application/json"})
    assert "content-length" not in response.request.headers
    assert response.status_code == 413
    assert fake_db.visits.documents == []


def test_log_visit_rejects_bad_json(client):
    response = client.post("/api/analytics/log", content="{not json", headers={"Content-Type": "application/json"})
    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "Invalid JSON"}


def test_log_visit_requires_path_and_method(client):
    response = client.post("/api/analytics/log", json={"path": "/"})
    assert response.status_code == 400
    response = client.post("/api/analytics/log", json=["/", "GET"])
    assert response.status_code == 400


def test_log_visit_get_pixel(client, fake_db):
    assert client.get("/api/analytics/log").json() == {"success": True}
    assert fake_db.visits.documents[-1]["path"] == "/api/analytics/log"


# Security and blacklist

def test_security_overview(client, fake_db, admin_token):
    fake_db.threats.documents.extend([_threat("203.0.113.1"), _threat("203.0.113.1", 2), _threat("203.0.113.2")])
    response = client.get("/api/analytics/security", params={"timeRange": "7d"}, headers=_auth(admin_token))
    assert response.status_code == 200
    body = response.json()
    assert body["totalAttempts"] == 3
    assert body["blockedIPs"] == 2
    assert body["topAttackerIPs"][0] == {"ip": "203.0.113.1", "attemptCount": 2}


def test_security_overview_rejects_1h(client, admin_token):
    response = client.get("/api/analytics/security", params={"timeRange": "1h"}, headers=_auth(admin_token))
    assert response.status_code == 400


def test_blacklist_is_public_and_defaults_to_txt(client, fake_db):
    fake_db.threats.documents.extend([_threat("203.0.113.1"), _threat("203.0.113.1", 2), _threat("203.0.113.2")])
    response = client.get("/api/analytics/security/blacklist")
    assert response.status_code == 200
    assert response.text == "203.0.113.1  2\n203.0.113.2  1\n"
    assert 'filename="ip-blacklist.txt"' in response.headers["content-disposition"]


def test_blacklist_apache(client, fake_db):
    fake_db.threats.documents.extend([_threat("203.0.113.1"), _threat("203.0.113.1", 2), _threat("203.0.113.2")])
    response = client.get("/api/analytics/security/blacklist", params={"format": "apache"})
    assert response.status_code == 200
    lines = response.text.splitlines()
    assert all(line.startswith("#") for line in lines[:3])
    assert lines[3:] == ["Deny from 203.0.113.1", "Deny from 203.0.113.2"]
    assert response.headers["content-disposition"] == 'attachment; filename="apache-deny.conf"'


def test_blacklist_empty_json(client):
    response = client.get("/api/analytics/security/blacklist", params={"format": "json"})
    assert response.status_code == 200
    assert response.json() == []


def test_blacklist_rejects_unknown_format(client):
    response = client.get("/api/analytics/security/blacklist", params={"format": "xml"})
    assert response.status_code == 400
    assert "xml" in response.json()["detail"]


def test_blacklist_store_failure_is_500(client, fake_db):
    fake_db.threats.fail = True
    response = client.get("/api/analytics/security/blacklist", params={"format": "csv"})
    assert response.status_code == 500
    assert "content-disposition" not in response.headers


# Auth

def test_login_sets_session_cookie(client):
    response = client.post("/api/auth/login", json={"username": "admin", "password": "correct horse"})
    assert response.status_code == 200
    set_cookie = response.headers["set-cookie"]
    assert "auth-token=" in set_cookie
    assert "HttpOnly" in set_cookie
    assert "samesite=strict" in set_cookie.lower()

    check = client.get("/api/auth/check")
    assert check.json() == {"authenticated": True, "username": "admin"}


def test_login_wrong_password(client):
    response = client.post("/api/auth/login", json={"username": "admin", "password": "nope"})
    assert response.status_code == 401


def test_login_is_rate_limited(client):
    statuses = [
        client.post("/api/auth/login", json={"username": "admin", "password": "nope"}).status_code
        for _ in range(6)
    ]
    assert statuses[:5] == [401] * 5
    assert statuses[5] == 429


def test_check_without_session(client):
    response = client.get("/api/auth/check")
    assert response.status_code == 401


def test_logout_clears_cookie(client, admin_token):
    client.cookies.set("auth-token", admin_token)
    response = client.post("/api/auth/logout")
    assert response.json() == {"success": True}
    assert 'auth-token=""' in response.headers["set-cookie"]


def test_pin_check(client):
    ok = client.post("/api/auth/check", json={"type": "cloudinary_test_pin", "pin": "4321"})
    assert ok.json() == {"valid": True}
    wrong = client.post("/api/auth/check", json={"type": "cloudinary_test_pin", "pin": "0000"})
    assert wrong.status_code == 401
    unsupported = client.post("/api/auth/check", json={"type": "other", "pin": "4321"})
    assert unsupported.status_code == 400


def test_pin_check_is_rate_limited(client):
    statuses = [
        client.post("/api/auth/check", json={"type": "cloudinary_test_pin", "pin": "0000"}).status_code
        for _ in range(6)
    ]
    assert statuses[5] == 429


# Contact

CONTACT = {"name": "Ada", "email": "ada@example.com", "subject": "Hello", "message": "Nice site"}


def test_contact_requires_all_fields(client):
    response = client.post("/api/contact", json={**CONTACT, "message": ""})
    assert response.status_code == 400


def test_contact_rejects_bad_email(client):
    response = client.post("/api/contact", json={**CONTACT, "email": "not-an-email"})
    assert response.status_code == 400


def test_contact_without_email_config_fails(client):
    response = client.post("/api/contact", json=CONTACT)
    assert response.status_code == 500


def test_contact_sends_and_limits_per_address(client, monkeypatch):
    sent = []

    async def fake_send(contact, settings):
        sent.append(contact)
        return SendResult(success=True)

    monkeypatch.setattr("sentinel.routers.contact.send_contact_email", fake_send)

    assert client.post("/api/contact", json=CONTACT).json() == {"success": True}
    again = client.post("/api/contact", json=CONTACT)
    assert again.status_code == 429
    assert "Retry-After" in again.headers
    other = client.post("/api/contact", json={**CONTACT, "email": "grace@example.com"})
    assert other.status_code == 200
    assert [c.email for c in sent] == ["ada@example.com", "grace@example.com"]
