"""
Tests for the HTTP and websocket API.
"""
from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from ai_optimizer.core.config import Settings
from ai_optimizer.main import create_app
from ai_optimizer.services.optimizer import AIOptimizer

PREFIX = "/api/v1"


@pytest.fixture
def optimizer(config_store):
    instance = AIOptimizer(config_store)
    instance.initialize()
    return instance


@pytest.fixture
def client(optimizer):
    app = create_app(optimizer, Settings(LOG_LEVEL="WARNING"))
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def camel_request(sample_config):
    """Optimization request as a browser would send it."""
    return {
        "config": {
            "base": {"width": 1440, "height": 900},
            "breakpoints": sample_config["breakpoints"],
            "strategy": {
                "origin": "width",
                "minFontSize": 16,
                "minTapTarget": 44,
                "tokens": {
                    "font_size": {"scale": 0.9, "min": 12, "max": 48, "step": 1},
                    "spacing": {"scale": 0.8, "min": 4},
                },
            },
        },
        "usageData": [
            {
                "componentType": "ProductCard",
                "responsiveValues": [
                    {"token": "font_size", "property": "fontSize", "baseValue": 16},
                ],
                "performance": {"renderTime": 12.0, "bundleSize": 2048},
                "interactions": {"interactionRate": 0.4},
                "context": {"position": "main"},
            }
        ],
    }


def _experiment(client, **overrides):
    body = {
        "name": "Compact spacing",
        "metric": "interaction_rate",
        "variants": [{"name": "control", "weight": 0.5}, {"name": "compact", "weight": 0.5}],
    }
    body.update(overrides)
    response = client.post(f"{PREFIX}/experiments", json=body)
    assert response.status_code == 201
    return response.json()["experimentId"]


class TestSystemEndpoints:
    """Test health and metrics."""

    def test_health(self, client):
        """Test health check payload in camelCase."""
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["modelInitialized"] is True
        assert data["configVersion"] == 1

    def test_health_degraded(self, config_store):
        """Test health before the model is initialized."""
        app = create_app(AIOptimizer(config_store), Settings(LOG_LEVEL="WARNING"))
        with TestClient(app) as client:
            data = client.get("/health").json()

        assert data["status"] == "degraded"
        assert data["modelInitialized"] is False

    def test_metrics(self, client, camel_request):
        """Test prometheus exposition."""
        client.post(f"{PREFIX}/optimize", json=camel_request)
        response = client.get("/metrics")

        assert response.status_code == 200
        assert "optimizer_optimizations_total" in response.text

    def test_metrics_disabled(self, optimizer):
        """Test that the metrics route can be switched off."""
        app = create_app(optimizer, Settings(LOG_LEVEL="WARNING", ENABLE_PROMETHEUS_METRICS=False))
        with TestClient(app) as client:
            assert client.get("/metrics").status_code == 404

    def test_model_info(self, client):
        """Test model description."""
        data = client.get(f"{PREFIX}/model").json()

        assert data["initialized"] is True
        assert data["layers"] == 6
        assert data["configVersion"] == 1


class TestOptimizeEndpoints:
    """Test optimization endpoints."""

    def test_optimize(self, client, camel_request):
        """Test a single optimization with camelCase input and output."""
        response = client.post(f"{PREFIX}/optimize", json=camel_request)

        assert response.status_code == 200
        data = response.json()
        assert set(data["suggestedTokens"]) == {"font_size", "spacing"}
        assert "confidenceScore" in data
        assert data["performanceImpacts"][0]["current_value"] == 2048.0

    def test_optimize_rejects_missing_usage(self, client, camel_request):
        """Test schema validation."""
        del camel_request["usageData"]

        assert client.post(f"{PREFIX}/optimize", json=camel_request).status_code == 422

    def test_optimize_rejects_bad_origin(self, client, camel_request):
        """Test enum validation on the scaling origin."""
        camel_request["config"]["strategy"]["origin"] = "depth"

        assert client.post(f"{PREFIX}/optimize", json=camel_request).status_code == 422

    def test_optimize_without_model(self, config_store, camel_request):
        """Test the 503 mapping for an uninitialized model."""
        app = create_app(AIOptimizer(config_store), Settings(LOG_LEVEL="WARNING"))
        with TestClient(app) as client:
            response = client.post(f"{PREFIX}/optimize", json=camel_request)

        assert response.status_code == 503

    def test_batch(self, client, camel_request):
        """Test batch optimization."""
        body = {"requests": [camel_request, dict(camel_request, priority=5)], "timeout": 10}

        response = client.post(f"{PREFIX}/optimize/batch", json=body)

        assert response.status_code == 200
        data = response.json()
        assert data["succeeded"] == 2
        assert data["failed"] == 0
        assert all(item["success"] for item in data["results"])
        assert "retryCount" in data["results"][0]

    def test_batch_requires_requests(self, client):
        """Test empty batches."""
        assert client.post(f"{PREFIX}/optimize/batch", json={"requests": []}).status_code == 422


class TestExperimentEndpoints:
    """Test experiment endpoints."""

    def test_create_and_get(self, client):
        """Test experiment creation."""
        experiment_id = _experiment(client)

        data = client.get(f"{PREFIX}/experiments/{experiment_id}").json()

        assert data["status"] == "draft"
        assert [variant["name"] for variant in data["variants"]] == ["control", "compact"]

    def test_unknown_experiment(self, client):
        """Test 404 for unknown ids."""
        assert client.get(f"{PREFIX}/experiments/missing").status_code == 404

    def test_lifecycle(self, client):
        """Test start, assign, record, analyze and stop."""
        experiment_id = _experiment(client)

        start = client.post(f"{PREFIX}/experiments/{experiment_id}/start")
        assert start.status_code == 200
        assert start.json()["status"] == "running"

        assignment = client.get(f"{PREFIX}/experiments/{experiment_id}/assignment/user-1").json()
        assert assignment["variant"] in {"control", "compact"}

        for index, (variant, value) in enumerate([("control", 0.0), ("control", 1.0), ("compact", 1.0), ("compact", 1.0)]):
            recorded = client.post(
                f"{PREFIX}/experiments/{experiment_id}/results",
                json={"userId": f"user-{index}", "variant": variant, "value": value},
            )
            assert recorded.status_code == 202

        analysis = client.get(f"{PREFIX}/experiments/{experiment_id}/analysis").json()
        assert analysis["winner"] == "compact"
        assert analysis["variants"]["compact"]["sample_size"] == 2
        assert analysis["risk"]["level"] in {"low", "medium", "high"}

        stop = client.post(f"{PREFIX}/experiments/{experiment_id}/stop", params={"reason": "manual"})
        assert stop.json()["status"] == "stopped"
        assert client.post(f"{PREFIX}/experiments/{experiment_id}/stop").status_code == 409

    def test_start_twice_conflicts(self, client):
        """Test invalid transitions."""
        experiment_id = _experiment(client)
        client.post(f"{PREFIX}/experiments/{experiment_id}/start")

        assert client.post(f"{PREFIX}/experiments/{experiment_id}/start").status_code == 409

    def test_draft_rejects_results(self, client):
        """Test result recording before start."""
        experiment_id = _experiment(client)

        response = client.post(
            f"{PREFIX}/experiments/{experiment_id}/results",
            json={"userId": "user-1", "variant": "control", "value": 1.0},
        )

        assert response.status_code == 409

    def test_draft_assignment_is_null(self, client):
        """Test assignment before start."""
        experiment_id = _experiment(client)

        data = client.get(f"{PREFIX}/experiments/{experiment_id}/assignment/user-1").json()

        assert data["variant"] is None

    def test_analysis_without_results(self, client):
        """Test 404 when nothing has been recorded."""
        experiment_id = _experiment(client)
        client.post(f"{PREFIX}/experiments/{experiment_id}/start")

        assert client.get(f"{PREFIX}/experiments/{experiment_id}/analysis").status_code == 404

    def test_expired_experiment_completes(self, client):
        """Test lazy completion after the end time."""
        now = datetime.utcnow()
        experiment_id = _experiment(
            client,
            startAt=(now - timedelta(hours=2)).isoformat(),
            endAt=(now - timedelta(hours=1)).isoformat(),
        )
        client.post(f"{PREFIX}/experiments/{experiment_id}/start")

        data = client.get(f"{PREFIX}/experiments/{experiment_id}").json()

        assert data["status"] == "completed"
        assert data["stopReason"] == "duration_completed"

    def test_power(self, client):
        """Test power analysis query."""
        data = client.get(f"{PREFIX}/experiments/power", params={"effect_size": 0.5, "daily_traffic": 21}).json()

        assert data["sampleSize"] == 63
        assert data["recommendedDurationDays"] == pytest.approx(3.0)

    def test_power_rejects_zero_effect(self, client):
        """Test invalid effect size."""
        assert client.get(f"{PREFIX}/experiments/power", params={"effect_size": 0}).status_code == 422

    def test_statistics(self, client):
        """Test experiment counters."""
        _experiment(client)

        data = client.get(f"{PREFIX}/experiments/statistics").json()

        assert data["totalExperiments"] == 1
        assert data["activeExperiments"] == 0


class TestStream:
    """Test the websocket channel."""

    def test_optimize_over_websocket(self, client, camel_request):
        """Test status, suggestions and status replies."""
        with client.websocket_connect(f"{PREFIX}/stream") as websocket:
            hello = websocket.receive_json()
            assert hello["type"] == "status"
            assert hello["payload"]["connected"] is True

            websocket.send_json({"action": "optimize", "requestId": "r1", **camel_request})
            reply = websocket.receive_json()
            assert reply["type"] == "suggestions"
            assert reply["request_id"] == "r1"
            assert set(reply["payload"]["suggested_tokens"]) == {"font_size", "spacing"}

            websocket.send_json({"action": "status"})
            status = websocket.receive_json()
            assert status["type"] == "status"
            assert status["payload"]["completed_requests"] == 1

    def test_invalid_request_over_websocket(self, client):
        """Test error replies for malformed requests."""
        with client.websocket_connect(f"{PREFIX}/stream") as websocket:
            websocket.receive_json()
            websocket.send_json({"action": "optimize", "requestId": "r1", "config": {}})

            reply = websocket.receive_json()

            assert reply["type"] == "error"
            assert reply["request_id"] == "r1"

    def test_unknown_action(self, client):
        """Test unknown actions."""
        with client.websocket_connect(f"{PREFIX}/stream") as websocket:
            websocket.receive_json()
            websocket.send_json({"action": "rewind"})

            assert websocket.receive_json()["type"] == "error"
