"""Tests for the integration registry."""

import uuid

import pytest
from conftest import OTHER_OWNER, OWNER

from jsonoracle.exceptions import (
    AuthError,
    IntegrationSuspendedError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from jsonoracle.integrations import (
    IntegrationRegistry,
    generate_api_key,
    hash_api_key,
    normalize_config,
    validate_webhook_url,
)
from jsonoracle.models.db import IntegrationStatus, TransportKind


class TestApiKeys:
    def test_generate_api_key(self):
        key, prefix, salt, key_hash = generate_api_key("jo_test_")

        assert key.startswith("jo_test_")
        assert key.startswith(prefix)
        assert len(prefix) == len("jo_test_") + 8
        assert key_hash == hash_api_key(key, salt)
        assert key not in key_hash

    def test_keys_are_unique(self):
        keys = {generate_api_key("jo_test_")[0] for _ in range(50)}
        assert len(keys) == 50

    def test_hash_depends_on_salt(self):
        assert hash_api_key("jo_test_abc", "salt-a") != hash_api_key("jo_test_abc", "salt-b")


class TestValidation:
    @pytest.mark.parametrize(
        "url", ["https://example.com/hook", "http://localhost:9000/cb"]
    )
    def test_valid_webhook_urls(self, url):
        assert validate_webhook_url(url) == url

    @pytest.mark.parametrize(
        "url", ["ftp://example.com/hook", "example.com/hook", "https:///nohost", ""]
    )
    def test_invalid_webhook_urls(self, url):
        with pytest.raises(ValidationError):
            validate_webhook_url(url)

    def test_normalize_config_defaults(self):
        config = normalize_config(None)

        assert config["domain"] == "generic"
        assert config["models"] == []
        assert config["notifications"]["webhook"] is True
        assert config["notifications"]["email"] is False

    def test_normalize_config_merges_over_base(self):
        base = normalize_config({"domain": "finance", "models": ["llama2"]})
        config = normalize_config({"notifications": {"stream": False}}, base=base)

        assert config["domain"] == "finance"
        assert config["models"] == ["llama2"]
        assert config["notifications"]["stream"] is False
        assert config["notifications"]["webhook"] is True

    @pytest.mark.parametrize(
        "raw",
        [
            {"colour": "blue"},
            {"models": "llama2"},
            {"models": ["llama2", ""]},
            {"notifications": {"sms": True}},
            {"notifications": {"webhook": "yes"}},
            {"auto_analyze": 1},
            {"domain": ""},
        ],
    )
    def test_normalize_config_rejects(self, raw):
        with pytest.raises(ValidationError):
            normalize_config(raw)


class TestRegistration:
    def test_register_webhook_integration(self, registry: IntegrationRegistry):
        integration, key = registry.register(
            owner=OWNER,
            name="Orders",
            webhook_url="https://example.com/hook",
            config={"domain": "ecommerce"},
        )

        assert integration.owner_id == OWNER
        assert integration.transport_kind == TransportKind.WEBHOOK.value
        assert integration.status == IntegrationStatus.ACTIVE.value
        assert integration.config["domain"] == "ecommerce"
        assert integration.webhook_secret
        assert integration.api_key_hash != key
        assert key.startswith(integration.api_key_prefix)

    def test_webhook_transport_requires_url(self, registry: IntegrationRegistry):
        with pytest.raises(ValidationError):
            registry.register(owner=OWNER, name="No URL", transport_kind="webhook")

    def test_unknown_transport_rejected(self, registry: IntegrationRegistry):
        with pytest.raises(ValidationError):
            registry.register(owner=OWNER, name="Carrier pigeon", transport_kind="pigeon")

    def test_name_required(self, registry: IntegrationRegistry):
        with pytest.raises(ValidationError):
            registry.register(owner=OWNER, name="   ", transport_kind="polling")

    def test_list_by_owner(self, registry: IntegrationRegistry):
        registry.register(owner=OWNER, name="A", transport_kind="polling")
        registry.register(owner=OWNER, name="B", transport_kind="stream_only")
        registry.register(owner=OTHER_OWNER, name="C", transport_kind="polling")

        names = {i.name for i in registry.list_by_owner(OWNER)}
        assert names == {"A", "B"}


class TestAuthentication:
    def test_authenticate_round_trip(self, registry, polling_integration):
        integration, key = polling_integration

        assert registry.authenticate(key).id == integration.id

    @pytest.mark.parametrize("key", [None, "", "nonsense", "jo_test_", "jo_test_doesnotexist"])
    def test_unknown_keys_rejected(self, registry, polling_integration, key):
        with pytest.raises(AuthError):
            registry.authenticate(key)

    def test_prefix_match_with_wrong_secret_rejected(self, registry, polling_integration):
        integration, key = polling_integration
        forged = integration.api_key_prefix + "x" * 30

        with pytest.raises(AuthError):
            registry.authenticate(forged)

    def test_rotate_key_invalidates_old_key(self, registry, polling_integration):
        integration, old_key = polling_integration

        new_key = registry.rotate_key(integration.id, OWNER)

        assert new_key != old_key
        assert registry.authenticate(new_key).id == integration.id
        with pytest.raises(AuthError):
            registry.authenticate(old_key)

    def test_suspended_integration_still_authenticates(self, registry, polling_integration):
        integration, key = polling_integration
        registry.suspend(integration.id, OWNER)

        authenticated = registry.authenticate(key)
        assert authenticated.is_suspended

    def test_deleted_integration_does_not_authenticate(self, registry, polling_integration):
        integration, key = polling_integration
        registry.delete(integration.id, OWNER)

        with pytest.raises(AuthError):
            registry.authenticate(key)


class TestOwnership:
    def test_other_owner_cannot_mutate(self, registry, polling_integration):
        integration, _ = polling_integration

        with pytest.raises(PermissionDeniedError):
            registry.rotate_key(integration.id, OTHER_OWNER)
        with pytest.raises(PermissionDeniedError):
            registry.suspend(integration.id, OTHER_OWNER)
        with pytest.raises(PermissionDeniedError):
            registry.update_config(integration.id, OTHER_OWNER, name="Mine now")
        with pytest.raises(PermissionDeniedError):
            registry.get_owned(integration.id, OTHER_OWNER)

    def test_unknown_integration(self, registry):
        with pytest.raises(NotFoundError):
            registry.get_owned(uuid.uuid4(), OWNER)
        with pytest.raises(NotFoundError):
            registry.suspend(uuid.uuid4(), OWNER)

    def test_update_config(self, registry, polling_integration):
        integration, _ = polling_integration

        updated = registry.update_config(
            integration.id,
            OWNER,
            name="Renamed",
            webhook_url="https://example.com/new",
            config={"models": ["llama2", "openai:gpt-4o-mini"]},
        )

        assert updated.name == "Renamed"
        assert updated.webhook_url == "https://example.com/new"
        assert updated.config["models"] == ["llama2", "openai:gpt-4o-mini"]
        assert registry.get(integration.id).name == "Renamed"

    def test_suspended_integration_rejects_config_and_rotation(self, registry, polling_integration):
        integration, _ = polling_integration
        registry.suspend(integration.id, OWNER)

        with pytest.raises(IntegrationSuspendedError):
            registry.update_config(integration.id, OWNER, name="Nope")
        with pytest.raises(IntegrationSuspendedError):
            registry.rotate_key(integration.id, OWNER)

        registry.reactivate(integration.id, OWNER)
        assert registry.update_config(integration.id, OWNER, name="Yes").name == "Yes"

    def test_delete_is_a_tombstone(self, registry, polling_integration):
        integration, _ = polling_integration
        registry.delete(integration.id, OWNER)

        assert registry.get(integration.id) is None
        assert registry.list_by_owner(OWNER) == []
        with pytest.raises(NotFoundError):
            registry.delete(integration.id, OWNER)

    def test_touch_records_activity(self, registry, polling_integration):
        integration, _ = polling_integration
        assert integration.last_activity_at is None

        registry.touch(integration.id)

        assert registry.get(integration.id).last_activity_at is not None
