"""
Tests for bulk text ingestion.

The AI endpoint is never called: request_completion is replaced with a stub
returning a canned model reply, or the HTTP client is stubbed directly.

Tests cover:
- Successful extraction and insert with defaults applied
- Code-fenced replies
- Empty, non-array and non-JSON replies (nothing inserted)
- AI endpoint failures and missing API key
"""

import json

import httpx
import pytest

from partsmatch import ingestion
from partsmatch.config import settings
from partsmatch.ingestion import IngestionError, normalize_part, parse_parts, strip_code_fence
from partsmatch.models import Part
from partsmatch.storage import SessionLocal


TWO_PARTS_TEXT = "Carrier 3 ton condenser $800, Kohler toilet brand new $150"

TWO_PARTS_REPLY = json.dumps([
    {
        "part_name": "Carrier 3 ton condenser",
        "category": "hvac",
        "condition": "used-good",
        "price": 800,
        "description": "",
    },
    {
        "part_name": "Kohler toilet",
        "category": "plumbing",
        "condition": "new",
        "price": 150,
        "description": "brand new",
    },
])


def stub_completion(monkeypatch, reply: str):
    calls = []

    async def fake_request_completion(text: str) -> str:
        calls.append(text)
        return reply

    monkeypatch.setattr(ingestion, "request_completion", fake_request_completion)
    return calls


def stored_parts() -> list:
    with SessionLocal() as db:
        return db.query(Part).all()


class TestIngestEndpoint:
    """Test POST /ingest/parts-text."""

    def test_two_parts_inserted(self, client, supplier, monkeypatch):
        calls = stub_completion(monkeypatch, TWO_PARTS_REPLY)

        response = client.post(
            "/ingest/parts-text", json={"text": TWO_PARTS_TEXT}, headers=supplier["headers"]
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["count"] == 2
        assert calls == [TWO_PARTS_TEXT]

        parts = stored_parts()
        assert len(parts) == 2
        assert {p.status for p in parts} == {"available"}
        assert {p.supplier_id for p in parts} == {supplier["user_id"]}
        assert sorted(p.price for p in parts) == [150, 800]

    def test_inserted_parts_are_browsable(self, client, supplier, requester, monkeypatch):
        stub_completion(monkeypatch, TWO_PARTS_REPLY)
        client.post("/ingest/parts-text", json={"text": TWO_PARTS_TEXT}, headers=supplier["headers"])

        response = client.get("/parts", params={"q": "hvac"}, headers=requester["headers"])

        assert [p["part_name"] for p in response.json()["data"]] == ["Carrier 3 ton condenser"]

    def test_no_parts_extracted(self, client, supplier, monkeypatch):
        """An empty array is a hard failure with nothing inserted."""
        stub_completion(monkeypatch, "[]")

        response = client.post(
            "/ingest/parts-text", json={"text": "hello, how are you"}, headers=supplier["headers"]
        )

        assert response.status_code == 422
        assert response.json() == {"detail": "No parts could be extracted from the text"}
        assert stored_parts() == []

    def test_invalid_entry_aborts_whole_batch(self, client, supplier, monkeypatch):
        reply = json.dumps([{"part_name": "Valve", "category": "plumbing"}, {"category": "other"}])
        stub_completion(monkeypatch, reply)

        response = client.post("/ingest/parts-text", json={"text": "valve, ???"}, headers=supplier["headers"])

        assert response.status_code == 422
        assert stored_parts() == []

    def test_ai_failure_is_single_message(self, client, supplier, monkeypatch):
        async def failing_completion(text: str) -> str:
            raise IngestionError("AI API error: 503")

        monkeypatch.setattr(ingestion, "request_completion", failing_completion)

        response = client.post("/ingest/parts-text", json={"text": "anything"}, headers=supplier["headers"])

        assert response.status_code == 502
        assert response.json() == {"detail": "AI API error: 503"}
        assert stored_parts() == []

    def test_requires_session(self, client):
        response = client.post("/ingest/parts-text", json={"text": "anything"})

        assert response.status_code == 401

    def test_empty_text_rejected(self, client, supplier):
        response = client.post("/ingest/parts-text", json={"text": ""}, headers=supplier["headers"])

        assert response.status_code == 422

    def test_whitespace_text_rejected_before_ai_call(self, client, supplier, monkeypatch):
        calls = stub_completion(monkeypatch, TWO_PARTS_REPLY)

        response = client.post("/ingest/parts-text", json={"text": "   \n\t  "}, headers=supplier["headers"])

        assert response.status_code == 422
        assert calls == []
        assert stored_parts() == []


class TestRequestCompletion:
    """Test the HTTP call to the AI endpoint."""

    def test_missing_api_key(self, client, supplier, monkeypatch):
        monkeypatch.setattr(settings, "LLM_API_KEY", None)

        response = client.post("/ingest/parts-text", json={"text": "anything"}, headers=supplier["headers"])

        assert response.status_code == 502
        assert response.json() == {"detail": "LLM_API_KEY is not configured"}

    def test_sends_prompt_and_reads_content(self, client, supplier, monkeypatch):
        captured = {}

        async def fake_post(self, url, json=None, headers=None, **kwargs):
            captured["url"] = url
            captured["body"] = json
            captured["headers"] = headers
            return httpx.Response(
                200,
                json={"choices": [{"message": {"content": "```json\n" + TWO_PARTS_REPLY + "\n```"}}]},
                request=httpx.Request("POST", url),
            )

        monkeypatch.setattr(settings, "LLM_API_KEY", "test-key")
        monkeypatch.setattr(httpx.AsyncClient, "post", fake_post)

        response = client.post(
            "/ingest/parts-text", json={"text": TWO_PARTS_TEXT}, headers=supplier["headers"]
        )

        assert response.status_code == 200
        assert response.json()["count"] == 2
        assert captured["url"] == settings.LLM_API_URL
        assert captured["headers"] == {
            "Authorization": "Bearer test-key",
            "X-Request-ID": response.headers["x-request-id"],
        }
        assert captured["body"]["model"] == settings.LLM_MODEL
        assert captured["body"]["temperature"] == 0.2
        assert captured["body"]["messages"][0]["role"] == "system"
        assert TWO_PARTS_TEXT in captured["body"]["messages"][1]["content"]

    def test_upstream_error_status(self, client, supplier, monkeypatch):
        async def fake_post(self, url, **kwargs):
            return httpx.Response(429, text="rate limited", request=httpx.Request("POST", url))

        monkeypatch.setattr(settings, "LLM_API_KEY", "test-key")
        monkeypatch.setattr(httpx.AsyncClient, "post", fake_post)

        response = client.post("/ingest/parts-text", json={"text": "anything"}, headers=supplier["headers"])

        assert response.status_code == 502
        assert response.json() == {"detail": "AI API error: 429"}
        assert stored_parts() == []

    def test_upstream_unreachable(self, client, supplier, monkeypatch):
        async def fake_post(self, url, **kwargs):
            raise httpx.ConnectTimeout("timed out")

        monkeypatch.setattr(settings, "LLM_API_KEY", "test-key")
        monkeypatch.setattr(httpx.AsyncClient, "post", fake_post)

        response = client.post("/ingest/parts-text", json={"text": "anything"}, headers=supplier["headers"])

        assert response.status_code == 502
        assert response.json() == {"detail": "AI service unavailable"}


class TestParsing:
    """Test reply parsing and defaults."""

    @pytest.mark.parametrize(
        "content",
        [
            '[{"part_name": "Valve"}]',
            '```json\n[{"part_name": "Valve"}]\n```',
            '```\n[{"part_name": "Valve"}]\n```',
            '  [{"part_name": "Valve"}]  \n',
        ],
    )
    def test_fences_are_stripped(self, content):
        assert strip_code_fence(content) == '[{"part_name": "Valve"}]'

    def test_defaults_applied(self):
        row = normalize_part({"part_name": "Ridge vent"})

        assert row == {
            "part_name": "Ridge vent",
            "category": "other",
            "condition": "used-good",
            "price": 0.0,
            "description": "",
            "status": "available",
        }

    def test_unknown_category_becomes_other(self):
        assert normalize_part({"part_name": "Widget", "category": "gadgets"})["category"] == "other"
        assert normalize_part({"part_name": "Shingle", "category": "Roofing"})["category"] == "roofing"

    def test_bad_price_defaults_to_zero(self):
        assert normalize_part({"part_name": "Door", "price": "call me"})["price"] == 0.0
        assert normalize_part({"part_name": "Door", "price": -5})["price"] == 0.0
        assert normalize_part({"part_name": "Door", "price": "45.5"})["price"] == 45.5

    @pytest.mark.parametrize("content", ["[]", "{}", '{"parts": []}', "not json at all", "null"])
    def test_non_array_or_empty_fails(self, content):
        with pytest.raises(IngestionError) as excinfo:
            parse_parts(content)

        assert excinfo.value.status_code == 422
