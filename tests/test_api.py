import asyncio
from collections.abc import Generator
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from spend_categorizer.app import create_app
from spend_categorizer.manager import CategorizerService


def tx_payload(tx_id: str, description: str, amount: float, merchant: str | None = None, day: str = "2024-01-14"):
    return {
        "id": tx_id,
        "account_id": "chequing",
        "amount": amount,
        "description": description,
        "merchant_name": merchant,
        "date": day,
    }


@pytest.fixture
def client(service: CategorizerService) -> Generator[TestClient, None, None]:
    with TestClient(create_app(service=service)) as test_client:
        yield test_client


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_categorize(client):
    response = client.post(
        "/categorize",
        json={"transaction": tx_payload("1", "TIM HORTONS #1234", -4.5, "Tim Hortons")},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["category_id"] == "restaurants"
    assert data["matched_from"] == "PATTERN"
    assert data["confidence"] >= 0.85


def test_categorize_batch_keeps_order(client):
    response = client.post("/categorize/batch", json={"transactions": [
        tx_payload("1", "LOBLAWS", -42.0, "Loblaws"),
        tx_payload("2", "PAYROLL DEPOSIT", 2500.0),
    ]})

    assert response.status_code == 200
    assert [r["category_id"] for r in response.json()] == ["groceries", "salary"]


def test_feedback_validation_maps_to_422(client):
    client.post("/categorize", json={"transaction": tx_payload("1", "LOBLAWS", -42.0, "Loblaws")})

    response = client.post("/feedback", json={"transaction_id": "1", "category_id": "groceries", "weight": 2})

    assert response.status_code == 422
    assert response.json()["code"] == "WEIGHT_OUT_OF_RANGE"


def test_feedback_unknown_transaction_is_404(client):
    response = client.post("/feedback", json={"transaction_id": "nope", "category_id": "groceries"})

    assert response.status_code == 404
    assert response.json()["code"] == "UNKNOWN_TRANSACTION"


def test_feedback_and_stats(client):
    client.post("/categorize", json={"transaction": tx_payload("1", "LOBLAWS", -42.0, "Loblaws")})

    response = client.post("/feedback", json={"transaction_id": "1", "category_id": "groceries"})
    stats = client.get("/stats").json()

    assert response.status_code == 200
    assert response.json()["corrected_category_id"] == "groceries"
    assert stats["user_feedback_count"] == 1
    assert stats["accuracy_rate"] == 1.0


def test_anomalies(client):
    response = client.post("/anomalies", json={
        "transactions": [
            tx_payload("1", "LOBLAWS", -42.0, "Loblaws"),
            tx_payload("2", "LOBLAWS", -42.0, "Loblaws"),
        ],
        "today": "2024-01-15",
    })

    assert response.status_code == 200
    duplicates = [a for a in response.json() if a["type"] == "DUPLICATE"]
    assert [a["transaction_id"] for a in duplicates] == ["2"]
    assert duplicates[0]["detected_at"] == "2024-01-15"


def test_category_lifecycle(client):
    created = client.post("/categories", json={"name": "Pets", "parent_id": "shopping", "color": "#112233"})
    assert created.status_code == 201
    pet_id = created.json()["id"]

    collision = client.post("/categories", json={"name": "pets", "parent_id": "shopping"})
    assert collision.status_code == 422
    assert collision.json()["code"] == "NAME_COLLISION"

    moved = client.patch(f"/categories/{pet_id}", json={"parent_id": None})
    assert moved.status_code == 200
    assert moved.json()["parent_id"] is None

    client.post("/categorize", json={"transaction": tx_payload("9", "PETSMART", -30.0, "PetSmart")})
    client.post("/feedback", json={"transaction_id": "9", "category_id": pet_id})

    blocked = client.delete(f"/categories/{pet_id}")
    assert blocked.status_code == 422
    assert blocked.json()["code"] == "REASSIGNMENT_REQUIRED"

    merged = client.post(f"/categories/{pet_id}/merge", json={"target_id": "shopping"})
    assert merged.status_code == 200
    assert pet_id not in [c["id"] for c in client.get("/categories").json()]


def test_usage_stats_and_suggestions(client):
    client.post("/categories", json={"name": "Coffee"})
    client.post("/categories", json={"name": "Coffee Shops"})

    stats = client.get("/categories/stats")
    suggestions = client.get("/categories/suggestions")

    assert stats.status_code == 200
    assert {s["category"]["id"] for s in stats.json()} >= {"coffee", "coffee_shops"}
    assert "MERGE_SIMILAR_CATEGORIES" in {s["type"] for s in suggestions.json()}


def test_delete_unknown_category_is_404(client):
    response = client.delete("/categories/nope")

    assert response.status_code == 404
    assert response.json()["code"] == "UNKNOWN_CATEGORY"


def test_retrain(client):
    response = client.post("/retrain")

    assert response.status_code == 200
    assert response.json()["version"] >= 1


def test_openapi_documents_error_bodies(client):
    schema = client.get("/openapi.json").json()

    responses = schema["paths"]["/categories/{category_id}"]["delete"]["responses"]
    assert responses["404"]["content"]["application/json"]["schema"]["$ref"].endswith("/ErrorResponse")
    assert "422" in schema["paths"]["/feedback"]["post"]["responses"]


def test_category_routes_run_service_in_worker_thread(client, service):
    offloaded = []
    to_thread = asyncio.to_thread

    async def recording(func, *args, **kwargs):
        offloaded.append(func)
        return await to_thread(func, *args, **kwargs)

    with patch("asyncio.to_thread", recording):
        client.get("/categories")
        client.get("/categories/stats")

    assert service.get_categories in offloaded
    assert service.get_category_usage_stats in offloaded
