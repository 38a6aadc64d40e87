"""
Tests for parts and part requests.

Tests cover:
- Creating listings with validation
- Browsing with free-text search
- Owner-only listing views and removal
- Closing instead of deleting a listing that has matches
"""

import pytest


def create_part(client, user, **overrides):
    body = {"part_name": "Copper elbow 1/2in", "category": "plumbing", "condition": "new"}
    body.update(overrides)
    return client.post("/parts", json=body, headers=user["headers"])


def create_request(client, user, **overrides):
    body = {"part_name": "Attic fan", "category": "hvac"}
    body.update(overrides)
    return client.post("/requests", json=body, headers=user["headers"])


class TestCreateListings:

    def test_create_part(self, client, supplier):
        response = create_part(client, supplier, price=4.5, description="box of 20", location="Reno")

        assert response.status_code == 201
        data = response.json()
        assert data["supplier_id"] == supplier["user_id"]
        assert data["status"] == "available"
        assert data["price"] == 4.5
        assert data["location"] == "Reno"

    def test_create_request(self, client, requester):
        response = create_request(client, requester, max_price=60, condition_preference="used")

        assert response.status_code == 201
        data = response.json()
        assert data["requester_id"] == requester["user_id"]
        assert data["status"] == "active"
        assert data["max_price"] == 60

    @pytest.mark.parametrize(
        "overrides",
        [
            {"part_name": "x"},
            {"part_name": "y" * 101},
            {"category": ""},
            {"condition": "mint"},
            {"price": -1},
            {"description": "d" * 501},
            {"location": "l" * 101},
        ],
    )
    def test_part_validation(self, client, supplier, overrides):
        response = create_part(client, supplier, **overrides)

        assert response.status_code == 422

    def test_request_validation(self, client, requester):
        response = create_request(client, requester, max_price=-10)

        assert response.status_code == 422


class TestBrowse:

    @pytest.fixture
    def catalog(self, client, supplier, requester):
        create_part(client, supplier, part_name="Copper elbow 1/2in", category="plumbing")
        create_part(client, supplier, part_name="20A breaker", category="electrical")
        create_request(client, requester, part_name="Attic fan", category="hvac")
        create_request(client, requester, part_name="Breaker box cover", category="electrical")

    def test_browse_all_parts(self, client, catalog, requester):
        data = client.get("/parts", headers=requester["headers"]).json()

        assert data["total"] == 2
        assert {p["owner_name"] for p in data["data"]} == {"Sam Supplier"}
        assert {p["owner_trade"] for p in data["data"]} == {"electrician"}

    def test_search_by_name_case_insensitive(self, client, catalog, requester):
        data = client.get("/parts", params={"q": "COPPER"}, headers=requester["headers"]).json()

        assert [p["part_name"] for p in data["data"]] == ["Copper elbow 1/2in"]

    def test_search_by_category(self, client, catalog, supplier):
        data = client.get("/requests", params={"q": "electrical"}, headers=supplier["headers"]).json()

        assert [r["part_name"] for r in data["data"]] == ["Breaker box cover"]

    def test_search_matches_name_or_category(self, client, catalog, supplier):
        data = client.get("/requests", params={"q": "breaker"}, headers=supplier["headers"]).json()

        assert data["total"] == 1
        assert data["data"][0]["owner_name"] == "Rae Requester"

    def test_browse_requires_session(self, client, catalog):
        assert client.get("/parts").status_code == 401


class TestOwnListings:

    def test_my_listings_only_mine(self, client, supplier, requester, outsider):
        create_part(client, supplier, part_name="Mine")
        create_part(client, outsider, part_name="Not mine")
        create_request(client, supplier, part_name="My wish")

        parts = client.get("/me/parts", headers=supplier["headers"]).json()
        requests = client.get("/me/requests", headers=supplier["headers"]).json()

        assert [p["part_name"] for p in parts["data"]] == ["Mine"]
        assert [r["part_name"] for r in requests["data"]] == ["My wish"]

    def test_delete_part(self, client, supplier):
        part_id = create_part(client, supplier).json()["id"]

        response = client.delete(f"/parts/{part_id}", headers=supplier["headers"])

        assert response.status_code == 200
        assert response.json() == {"status": "deleted"}
        assert client.get("/me/parts", headers=supplier["headers"]).json()["total"] == 0

    def test_delete_request(self, client, requester):
        request_id = create_request(client, requester).json()["id"]

        response = client.delete(f"/requests/{request_id}", headers=requester["headers"])

        assert response.json() == {"status": "deleted"}

    def test_only_owner_can_delete(self, client, supplier, outsider):
        part_id = create_part(client, supplier).json()["id"]

        response = client.delete(f"/parts/{part_id}", headers=outsider["headers"])

        assert response.status_code == 403

    def test_delete_unknown(self, client, supplier):
        assert client.delete("/parts/missing", headers=supplier["headers"]).status_code == 404
        assert client.delete("/requests/missing", headers=supplier["headers"]).status_code == 404

    def test_matched_part_is_closed(self, client, match, part, supplier, requester):
        """A part with a match is closed, so the match keeps its item name."""
        response = client.delete(f"/parts/{part['id']}", headers=supplier["headers"])

        assert response.json() == {"status": "closed"}
        assert client.get("/parts", headers=requester["headers"]).json()["total"] == 0
        mine = client.get("/me/parts", headers=supplier["headers"]).json()["data"]
        assert mine[0]["status"] == "closed"
        matches = client.get("/matches", headers=requester["headers"]).json()["data"]
        assert matches[0]["item_name"] == part["part_name"]
