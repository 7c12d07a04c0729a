"""Tests for the HTTP and WebSocket API."""

import inspect
import uuid

import pytest
from conftest import OTHER_OWNER, OWNER, make_model_client, owner_token
from fastapi.routing import APIRoute
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from jsonoracle.api.app import create_app
from jsonoracle.container import ServiceContainer
from jsonoracle.models.db import TransportKind

PAYLOAD = {"visits": [10, 12, 30], "site": "shop"}


@pytest.fixture
def integration_key(api_client, container):
    """A polling integration registered once the application has started."""
    integration, key = container.registry.register(
        owner=OWNER, name="API Tests", transport_kind=TransportKind.POLLING
    )
    return integration, key


def analyze(client, key, integration_id=None, **body):
    body.setdefault("data", PAYLOAD)
    if integration_id is not None:
        body["integration_id"] = str(integration_id)
    return client.post("/analyze", json=body, headers={"X-API-Key": key})


class TestHealth:
    def test_health(self, api_client):
        response = api_client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "database": "healthy"}


class TestAnalyze:
    def test_completed_analysis(self, api_client, integration_key):
        integration, key = integration_key

        response = analyze(api_client, key, integration.id, domain="ecommerce", models=["llama2", "mistral"])

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "completed"
        assert body["integration_id"] == str(integration.id)
        assert [t["model"] for t in body["turns"]] == ["llama2", "mistral"]
        assert body["analysis_result"]["summary"] == "Analysis by mistral."
        assert body["insights_count"] == len(body["analysis_result"]["insights"])

    def test_prompt_options(self, api_client, integration_key, scripted_backend):
        integration, key = integration_key

        response = analyze(
            api_client,
            key,
            integration.id,
            domain="logistics",
            analysis_type="optimization",
            custom_instructions="Prefer rail over road.",
            output_format="bullet_points",
        )

        assert response.status_code == 200
        _, prompt = scripted_backend.calls[0]
        assert prompt.startswith("You are a logistics optimisation expert.")
        assert "CUSTOM INSTRUCTIONS: Prefer rail over road." in prompt
        assert "Write your answer as bullet points" in prompt

    def test_key_in_body(self, api_client, integration_key):
        integration, key = integration_key

        response = api_client.post("/analyze", json={"api_key": key, "data": [1, 2, 3]})

        assert response.status_code == 200

    def test_missing_key(self, api_client):
        response = api_client.post("/analyze", json={"data": PAYLOAD})

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_wrong_key(self, api_client, integration_key):
        response = analyze(api_client, "jo_test_wrongwrongwrongwrong")

        assert response.status_code == 401

    def test_suspended_integration(self, api_client, container, integration_key):
        integration, key = integration_key
        container.registry.suspend(integration.id, OWNER)

        response = analyze(api_client, key)

        assert response.status_code == 403

    @pytest.mark.parametrize(
        "body",
        [
            {"models": []},
            {"rounds": 0},
            {"rounds": "many"},
            {"data": None},
            {"callback_url": "not a url"},
        ],
    )
    def test_invalid_requests(self, api_client, integration_key, body):
        _, key = integration_key

        response = analyze(api_client, key, **body)

        assert response.status_code == 422

    def test_background_submission(self, api_client, integration_key):
        integration, key = integration_key

        response = api_client.post(
            "/analyze?wait=false",
            json={"data": PAYLOAD},
            headers={"X-API-Key": key},
        )

        assert response.status_code == 202
        assert response.json()["status"] in ("pending", "running", "completed")

    def test_rate_limited(self, test_settings, scripted_backend):
        settings = test_settings.model_copy(update={"rate_limit_per_minute": 1})
        container = ServiceContainer(settings=settings, model_client=make_model_client(scripted_backend))
        container.database.init_db()
        integration, key = container.registry.register(
            owner=OWNER, name="Limited", transport_kind=TransportKind.POLLING
        )

        with TestClient(create_app(container=container, configure_logging=False)) as client:
            assert analyze(client, key).status_code == 200
            response = analyze(client, key)

        assert response.status_code == 429
        assert int(response.headers["Retry-After"]) >= 1


class TestDomains:
    def test_lists_supported_options(self, api_client):
        response = api_client.get("/domains")

        assert response.status_code == 200
        body = response.json()
        assert "finance" in body["domains"]
        assert "generic" in body["domains"]
        assert "anomaly_detection" in body["analysis_types"]
        assert "table" in body["output_formats"]


class TestRouteExecution:
    def test_only_analyze_runs_on_the_event_loop(self, container):
        app = create_app(container=container, configure_logging=False)

        async_paths = {
            route.path
            for route in app.routes
            if isinstance(route, APIRoute) and inspect.iscoroutinefunction(route.endpoint)
        }

        assert async_paths == {"/analyze"}


class TestResults:
    def test_get_analysis_with_delivery_attempts(self, api_client, integration_key):
        _, key = integration_key
        analysis_id = analyze(api_client, key).json()["id"]

        response = api_client.get(f"/analyses/{analysis_id}", headers={"X-API-Key": key})

        assert response.status_code == 200
        assert response.json()["id"] == analysis_id
        assert response.json()["delivery_attempts"] == []

    def test_other_integration_gets_404(self, api_client, container, integration_key):
        _, key = integration_key
        _, other_key = container.registry.register(
            owner=OTHER_OWNER, name="Other", transport_kind=TransportKind.POLLING
        )
        analysis_id = analyze(api_client, key).json()["id"]

        response = api_client.get(f"/analyses/{analysis_id}", headers={"X-API-Key": other_key})

        assert response.status_code == 404

    def test_unknown_analysis(self, api_client, integration_key):
        _, key = integration_key

        response = api_client.get(f"/analyses/{uuid.uuid4()}", headers={"X-API-Key": key})

        assert response.status_code == 404

    def test_list_results(self, api_client, integration_key):
        integration, key = integration_key
        for _ in range(3):
            analyze(api_client, key)

        response = api_client.get(
            f"/integrations/{integration.id}/results?limit=2", headers={"X-API-Key": key}
        )

        assert response.status_code == 200
        results = response.json()
        assert len(results) == 2
        assert all(r["turns"] == [] for r in results)

    def test_cancel_finished_analysis(self, api_client, integration_key):
        _, key = integration_key
        analysis_id = analyze(api_client, key).json()["id"]

        response = api_client.post(f"/analyses/{analysis_id}/cancel", headers={"X-API-Key": key})

        assert response.status_code == 422


class TestIntegrationManagement:
    def test_requires_identity(self, api_client):
        assert api_client.get("/user/integrations").status_code == 401
        response = api_client.get(
            "/user/integrations", headers={"Authorization": "Bearer not-a-jwt"}
        )
        assert response.status_code == 401
        forged = owner_token(secret="some-other-secret-0123456789abcdef")
        response = api_client.get(
            "/user/integrations", headers={"Authorization": f"Bearer {forged}"}
        )
        assert response.status_code == 401

    def test_lifecycle(self, api_client, owner_headers, other_owner_headers):
        created = api_client.post(
            "/user/integrations",
            json={
                "name": "Storefront",
                "transport_kind": "webhook",
                "webhook_url": "https://hooks.example.com/store",
                "config": {"domain": "ecommerce"},
            },
            headers=owner_headers,
        )
        assert created.status_code == 201
        body = created.json()
        integration_id, key = body["id"], body["api_key"]
        assert body["owner_id"] == OWNER
        assert key.startswith(body["api_key_prefix"])
        assert body["config"]["domain"] == "ecommerce"
        assert body["config"]["notifications"]["webhook"] is True
        assert "api_key_hash" not in body

        listed = api_client.get("/user/integrations", headers=owner_headers).json()
        assert [i["id"] for i in listed] == [integration_id]
        assert "api_key" not in listed[0]
        assert api_client.get("/user/integrations", headers=other_owner_headers).json() == []

        response = api_client.get(f"/user/integrations/{integration_id}", headers=other_owner_headers)
        assert response.status_code == 403

        updated = api_client.patch(
            f"/user/integrations/{integration_id}",
            json={"config": {"models": ["mistral"]}},
            headers=owner_headers,
        ).json()
        assert updated["config"]["models"] == ["mistral"]
        assert updated["config"]["domain"] == "ecommerce"

        rotated = api_client.post(
            f"/user/integrations/{integration_id}/rotate-key", headers=owner_headers
        ).json()
        assert rotated["api_key"] != key
        assert analyze(api_client, key).status_code == 401
        assert analyze(api_client, rotated["api_key"]).status_code == 200

        suspended = api_client.post(
            f"/user/integrations/{integration_id}/suspend", headers=owner_headers
        ).json()
        assert suspended["status"] == "suspended"
        assert analyze(api_client, rotated["api_key"]).status_code == 403
        api_client.post(f"/user/integrations/{integration_id}/reactivate", headers=owner_headers)

        results = api_client.get(
            f"/user/integrations/{integration_id}/results", headers=owner_headers
        ).json()
        assert len(results) == 1

        assert api_client.delete(
            f"/user/integrations/{integration_id}", headers=owner_headers
        ).status_code == 204
        assert api_client.get(
            f"/user/integrations/{integration_id}", headers=owner_headers
        ).status_code == 404
        assert analyze(api_client, rotated["api_key"]).status_code == 401
        # History stays readable by the owner
        assert len(
            api_client.get(
                f"/user/integrations/{integration_id}/results", headers=owner_headers
            ).json()
        ) == 1

    @pytest.mark.parametrize(
        "body",
        [
            {"name": ""},
            {"name": "x", "transport_kind": "carrier_pigeon"},
            {"name": "x", "transport_kind": "webhook"},
            {"name": "x", "webhook_url": "ftp://example.com"},
            {"name": "x", "transport_kind": "polling", "config": {"colour": "red"}},
        ],
    )
    def test_invalid_registration(self, api_client, owner_headers, body):
        response = api_client.post("/user/integrations", json=body, headers=owner_headers)

        assert response.status_code == 422

    def test_stats(self, api_client, owner_headers, integration_key):
        _, key = integration_key
        analyze(api_client, key)

        stats = api_client.get("/user/stats", headers=owner_headers).json()

        assert stats["total_integrations"] == 1
        assert stats["total_analyses"] == 1
        assert stats["successful_analyses"] == 1


class TestStream:
    def test_snapshot_of_finished_analysis(self, api_client, integration_key):
        _, key = integration_key
        analysis_id = analyze(api_client, key).json()["id"]

        with api_client.websocket_connect(
            f"/stream?resource=analysis:{analysis_id}&api_key={key}"
        ) as websocket:
            message = websocket.receive_json()
            websocket.send_json({"type": "unsubscribe"})

        assert message["kind"] == "snapshot"
        assert message["resource_id"] == f"analysis:{analysis_id}"
        assert message["content"]["status"] == "completed"

    def test_file_resource(self, api_client, integration_key, test_settings):
        _, key = integration_key
        with open(f"{test_settings.watch_root}/feed.json", "w") as f:
            f.write('{"price": 10}')

        with api_client.websocket_connect(f"/stream?resource=file:feed.json&api_key={key}") as websocket:
            message = websocket.receive_json()

        assert message["content"] == '{"price": 10}'

    def test_rejects_missing_key(self, api_client, integration_key):
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with api_client.websocket_connect(f"/stream?resource=analysis:{uuid.uuid4()}"):
                pass

        assert exc_info.value.code == 4401

    def test_rejects_other_integrations_analysis(self, api_client, container, integration_key):
        _, key = integration_key
        _, other_key = container.registry.register(
            owner=OTHER_OWNER, name="Other", transport_kind=TransportKind.POLLING
        )
        analysis_id = analyze(api_client, key).json()["id"]

        with pytest.raises(WebSocketDisconnect) as exc_info:
            with api_client.websocket_connect(
                f"/stream?resource=analysis:{analysis_id}&api_key={other_key}"
            ):
                pass

        assert exc_info.value.code == 4404

    def test_rejects_path_outside_root(self, api_client, integration_key):
        _, key = integration_key

        with api_client.websocket_connect(
            f"/stream?resource=file:../secrets.txt&api_key={key}"
        ) as websocket:
            message = websocket.receive_json()
            with pytest.raises(WebSocketDisconnect) as exc_info:
                websocket.receive_json()

        assert message["type"] == "error"
        assert exc_info.value.code == 4422
