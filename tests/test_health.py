"""
Tests for health probes, metrics, request logging and database error responses.
"""

from sqlalchemy.exc import OperationalError

from partsmatch import main
from partsmatch.storage import Base, engine


class TestHealth:

    def test_live(self, client):
        response = client.get("/health/live")

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "reason": None}

    def test_ready(self, client):
        response = client.get("/health/ready")

        assert response.status_code == 200
        assert response.json()["status"] == "ready"

    def test_not_ready_without_schema(self, client):
        Base.metadata.drop_all(bind=engine)

        response = client.get("/health/ready")

        assert response.status_code == 503
        assert response.json()["status"] == "not_ready"


class TestMetrics:

    def test_exposes_marketplace_counters(self, client, match, supplier):
        client.post(f"/matches/{match['id']}/agree", headers=supplier["headers"])
        client.post(f"/matches/{match['id']}/messages", json={"content": "hi"}, headers=supplier["headers"])

        response = client.get("/metrics")

        assert response.status_code == 200
        body = response.text
        assert 'match_events_total{event="created"}' in body
        assert 'match_events_total{event="agreed"}' in body
        assert 'messages_sent_total{result="sent"}' in body
        assert 'notifications_total{result="skipped"}' in body
        assert 'session_events_total{event="SIGNED_IN"}' in body
        assert "http_requests_total" in body

    def test_route_template_used_as_path_label(self, client, match, supplier):
        client.get(f"/matches/{match['id']}/messages", headers=supplier["headers"])

        body = client.get("/metrics").text

        assert 'path="/matches/{match_id}/messages"' in body
        assert match["id"] not in body


class TestRequestId:

    def test_response_includes_request_id_header(self, client):
        response = client.get("/health/live")

        assert "x-request-id" in response.headers


class TestDatabaseErrors:

    def test_read_failure_returns_json_500(self, client, match, supplier, monkeypatch):
        def failing_get_match(db, match_id):
            raise OperationalError("SELECT * FROM matches", {}, Exception("database is locked"))

        monkeypatch.setattr(main, "get_match", failing_get_match)

        response = client.get(f"/matches/{match['id']}/messages", headers=supplier["headers"])

        assert response.status_code == 500
        assert response.json() == {"detail": "Database error"}
        assert "x-request-id" in response.headers
