"""
Tests for the audit API.
"""

import asyncio

import pytest
from fastapi.testclient import TestClient

from ..api.app import create_app
from ..api.schemas import AuditResponse
from ..bots.strategy_engine import ExecutionOutcome


def stored_audit(**overrides):
    audit = {
        "gameId": "g1",
        "playerId": "bot-1",
        "turnNumber": 3,
        "snapshotHash": "0123456789abcdef",
        "archetype": "backbone_builder",
        "skillLevel": "hard",
        "allOptions": [{"id": "PassTurn-1", "type": "PassTurn", "feasible": True}],
        "scores": [0.0],
        "rankedOptions": [],
        "selectedPlan": {"actions": [{"type": "PassTurn", "parameters": {}}]},
        "executionResults": [],
        "executionResult": "fallback",
        "executionError": None,
        "attempts": 3,
        "timing": {"snapshotMs": 1.0, "totalMs": 4.0},
        "botStatus": {"cash": 50},
    }
    audit.update(overrides)
    return audit


@pytest.fixture
def client(seeded_store):
    return TestClient(create_app(seeded_store))


class TestHealth:
    def test_health(self, client):
        response = client.get("/api/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["service"] == "railbot"
        assert data["bots_enabled"] is True

    def test_health_reports_disabled_bots(self, client, monkeypatch):
        monkeypatch.setenv("ENABLE_AI_BOTS", "off")

        assert client.get("/api/health").json()["bots_enabled"] is False


class TestAuditEndpoint:
    def test_unknown_player(self, client):
        response = client.get("/api/games/g1/ai-audit/nobody")

        assert response.status_code == 404
        data = response.json()
        assert data["error_code"] == "PLAYER_NOT_FOUND"
        assert data["error"] == "AI player nobody not found"

    def test_human_player_is_not_found(self, client):
        response = client.get("/api/games/g1/ai-audit/human-1")

        assert response.status_code == 404
        assert response.json()["error_code"] == "PLAYER_NOT_FOUND"

    def test_bot_without_audit(self, client):
        response = client.get("/api/games/g1/ai-audit/bot-1")

        assert response.status_code == 404
        data = response.json()
        assert data["error_code"] == "AUDIT_NOT_FOUND"
        assert data["error"] == "No audit found for player bot-1"

    def test_latest_audit(self, seeded_store):
        asyncio.run(seeded_store.save_audit(stored_audit(turnNumber=2, createdAt="2024-01-01T00:00:00+00:00")))
        asyncio.run(seeded_store.save_audit(stored_audit(createdAt="2024-01-02T00:00:00+00:00")))
        client = TestClient(create_app(seeded_store))

        response = client.get("/api/games/g1/ai-audit/bot-1")

        assert response.status_code == 200
        data = response.json()
        assert data["turnNumber"] == 3
        assert data["executionResult"] == "fallback"
        assert data["timing"]["totalMs"] == 4.0
        assert data["timing"]["scoringMs"] == 0.0


class TestAuditSchema:
    def test_execution_result_uses_engine_outcome(self):
        audit = AuditResponse(**stored_audit())

        assert audit.executionResult is ExecutionOutcome.FALLBACK

    def test_unknown_execution_result_is_rejected(self):
        with pytest.raises(ValueError):
            AuditResponse(**stored_audit(executionResult="crashed"))
