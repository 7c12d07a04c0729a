"""
Integration registry.

Stores integrations, issues their API keys and resolves presented keys back to
an integration. Keys are shown in plaintext exactly once (at registration or
rotation); only a salted HMAC-SHA256 digest is persisted.
"""

import hashlib
import hmac
import logging
import secrets
import uuid
from contextlib import contextmanager
from typing import Any, Iterator, Optional
from urllib.parse import urlparse

from jsonoracle.db.connection import Database
from jsonoracle.db.repositories import IntegrationRepository
from jsonoracle.exceptions import (
    AuthError,
    IntegrationSuspendedError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from jsonoracle.models.db import Integration, IntegrationStatus, TransportKind, utcnow
from jsonoracle.utils.locks import KeyedLocks

logger = logging.getLogger(__name__)

# Random characters of the key kept in the lookup prefix
KEY_PREFIX_CHARS = 8

NOTIFICATION_FLAGS = ("webhook", "stream", "email", "dashboard_alerts")

DEFAULT_CONFIG: dict[str, Any] = {
    "domain": "generic",
    "models": [],
    "notifications": {
        "webhook": True,
        "stream": True,
        "email": False,
        "dashboard_alerts": True,
    },
    "auto_analyze": True,
}


def hash_api_key(api_key: str, salt: str) -> str:
    """Salted one-way digest of an API key."""
    return hmac.new(salt.encode(), api_key.encode(), hashlib.sha256).hexdigest()


def generate_api_key(namespace: str) -> tuple[str, str, str, str]:
    """
    Generate a new API key.

    Returns:
        Tuple of (full_key, prefix, salt, salted_hash)
    """
    random_part = secrets.token_urlsafe(32)
    full_key = f"{namespace}{random_part}"
    prefix = full_key[: len(namespace) + KEY_PREFIX_CHARS]
    salt = secrets.token_hex(16)
    return full_key, prefix, salt, hash_api_key(full_key, salt)


def validate_webhook_url(url: str) -> str:
    """
    Check that a webhook URL is absolute http(s) with a host.

    Raises:
        ValidationError: If the URL is malformed
    """
    try:
        parsed = urlparse(url)
    except ValueError as e:
        raise ValidationError(f"Invalid webhook URL: {e}") from e
    if parsed.scheme not in ("http", "https"):
        raise ValidationError(f"Webhook URL must use http or https: {url!r}")
    if not parsed.hostname:
        raise ValidationError(f"Webhook URL has no host: {url!r}")
    return url


def normalize_config(raw: Optional[dict[str, Any]], base: Optional[dict] = None) -> dict:
    """
    Merge a partial configuration over ``base`` (or the defaults) and validate it.

    Raises:
        ValidationError: On wrong types or unknown notification flags
    """
    merged = {
        **DEFAULT_CONFIG,
        **(base or {}),
        "notifications": {
            **DEFAULT_CONFIG["notifications"],
            **((base or {}).get("notifications") or {}),
        },
    }
    if not raw:
        return merged

    unknown = set(raw) - set(DEFAULT_CONFIG)
    if unknown:
        raise ValidationError(f"Unknown configuration keys: {sorted(unknown)}")

    if "domain" in raw:
        if not isinstance(raw["domain"], str) or not raw["domain"].strip():
            raise ValidationError("Configuration 'domain' must be a non-empty string")
        merged["domain"] = raw["domain"].strip()

    if "models" in raw:
        models = raw["models"]
        if not isinstance(models, list) or not all(
            isinstance(m, str) and m.strip() for m in models
        ):
            raise ValidationError("Configuration 'models' must be a list of model ids")
        merged["models"] = [m.strip() for m in models]

    if "notifications" in raw:
        flags = raw["notifications"] or {}
        if not isinstance(flags, dict):
            raise ValidationError("Configuration 'notifications' must be an object")
        for flag, value in flags.items():
            if flag not in NOTIFICATION_FLAGS:
                raise ValidationError(f"Unknown notification flag: {flag!r}")
            if not isinstance(value, bool):
                raise ValidationError(f"Notification flag {flag!r} must be a boolean")
            merged["notifications"][flag] = value

    if "auto_analyze" in raw:
        if not isinstance(raw["auto_analyze"], bool):
            raise ValidationError("Configuration 'auto_analyze' must be a boolean")
        merged["auto_analyze"] = raw["auto_analyze"]

    return merged


class IntegrationRegistry:
    """
    Process-scoped store of integrations.

    Every mutation of one integration runs under that integration's lock and
    inside a single database transaction; mutations of different integrations
    never contend.
    """

    def __init__(self, database: Database, api_key_namespace: str = "jo_live_"):
        self.database = database
        self.namespace = api_key_namespace
        self._locks = KeyedLocks()
        # Hashed against on lookups that find no candidate
        self._dummy_salt = secrets.token_hex(16)

    def register(
        self,
        owner: str,
        name: str,
        transport_kind: TransportKind | str = TransportKind.WEBHOOK,
        webhook_url: Optional[str] = None,
        config: Optional[dict[str, Any]] = None,
    ) -> tuple[Integration, str]:
        """
        Create an integration and issue its API key.

        Returns:
            Tuple of (integration, plaintext_api_key). The key is not
            retrievable afterwards.

        Raises:
            ValidationError: If the name, transport or webhook URL is invalid
        """
        if not owner:
            raise ValidationError("Owner identity is required")
        name = (name or "").strip()
        if not name or len(name) > 255:
            raise ValidationError("Integration name must be 1-255 characters")

        try:
            kind = TransportKind(transport_kind)
        except ValueError:
            raise ValidationError(f"Unknown transport kind: {transport_kind!r}")

        if webhook_url:
            validate_webhook_url(webhook_url)
        elif kind == TransportKind.WEBHOOK:
            raise ValidationError("Webhook transport requires a webhook URL")

        api_key, prefix, salt, key_hash = generate_api_key(self.namespace)

        with self.database.session() as session:
            integration = IntegrationRepository(session).create(
                owner_id=owner,
                name=name,
                transport_kind=kind.value,
                webhook_url=webhook_url,
                api_key_prefix=prefix,
                api_key_salt=salt,
                api_key_hash=key_hash,
                webhook_secret=secrets.token_hex(32),
                config=normalize_config(config),
                status=IntegrationStatus.ACTIVE.value,
            )

        logger.info(f"Registered integration {integration.id} ({name!r}) for {owner}")
        return integration, api_key

    def authenticate(self, presented_key: Optional[str]) -> Integration:
        """
        Resolve an API key to its integration.

        The same hashing and comparison work is done whether or not the key
        (or its prefix) is known. Suspended integrations authenticate; callers
        decide whether to reject them.

        Raises:
            AuthError: If the key is missing or unknown
        """
        key = presented_key or ""
        prefix = key[: len(self.namespace) + KEY_PREFIX_CHARS]

        candidates: list[Integration] = []
        if key.startswith(self.namespace) and len(key) > len(prefix):
            with self.database.session() as session:
                candidates = IntegrationRepository(session).get_by_api_key_prefix(prefix)

        matched: Optional[Integration] = None
        if candidates:
            for candidate in candidates:
                digest = hash_api_key(key, candidate.api_key_salt)
                if hmac.compare_digest(digest, candidate.api_key_hash) and matched is None:
                    matched = candidate
        else:
            hmac.compare_digest(hash_api_key(key, self._dummy_salt), "0" * 64)

        if matched is None:
            raise AuthError("Invalid API key")
        return matched

    def rotate_key(self, integration_id: uuid.UUID, owner: str) -> str:
        """
        Replace an integration's API key. The previous key stops working at once.

        Returns:
            The new plaintext API key
        """
        api_key, prefix, salt, key_hash = generate_api_key(self.namespace)
        with self._mutate(integration_id, owner, allow_suspended=False) as integration:
            integration.api_key_prefix = prefix
            integration.api_key_salt = salt
            integration.api_key_hash = key_hash

        logger.info(f"Rotated API key for integration {integration_id}")
        return api_key

    def get(self, integration_id: uuid.UUID) -> Optional[Integration]:
        """Get a live (non-deleted) integration by id."""
        with self.database.session() as session:
            return IntegrationRepository(session).get_live(integration_id)

    def get_owned(self, integration_id: uuid.UUID, owner: str) -> Integration:
        """
        Get an integration on behalf of its owner.

        Raises:
            NotFoundError: If the integration does not exist or was deleted
            PermissionDeniedError: If ``owner`` does not own it
        """
        integration = self.get(integration_id)
        if integration is None:
            raise NotFoundError(f"Integration {integration_id} not found")
        if integration.owner_id != owner:
            raise PermissionDeniedError(
                f"Integration {integration_id} belongs to another owner"
            )
        return integration

    def list_by_owner(self, owner: str) -> list[Integration]:
        with self.database.session() as session:
            return IntegrationRepository(session).get_by_owner(owner)

    def update_config(
        self,
        integration_id: uuid.UUID,
        owner: str,
        name: Optional[str] = None,
        webhook_url: Optional[str] = None,
        config: Optional[dict[str, Any]] = None,
    ) -> Integration:
        """
        Change an integration's name, webhook URL or configuration.

        ``config`` is merged over the stored configuration.
        """
        if name is not None:
            name = name.strip()
            if not name or len(name) > 255:
                raise ValidationError("Integration name must be 1-255 characters")
        if webhook_url:
            validate_webhook_url(webhook_url)

        with self._mutate(integration_id, owner, allow_suspended=False) as integration:
            if name is not None:
                integration.name = name
            if webhook_url:
                integration.webhook_url = webhook_url
            if config is not None:
                integration.config = normalize_config(config, base=integration.config)

        logger.info(f"Updated configuration of integration {integration_id}")
        return integration

    def suspend(self, integration_id: uuid.UUID, owner: str) -> Integration:
        with self._mutate(integration_id, owner) as integration:
            integration.status = IntegrationStatus.SUSPENDED.value
        logger.info(f"Suspended integration {integration_id}")
        return integration

    def reactivate(self, integration_id: uuid.UUID, owner: str) -> Integration:
        with self._mutate(integration_id, owner) as integration:
            integration.status = IntegrationStatus.ACTIVE.value
        logger.info(f"Reactivated integration {integration_id}")
        return integration

    def delete(self, integration_id: uuid.UUID, owner: str) -> None:
        """
        Tombstone an integration.

        Its key stops authenticating; stored requests and results keep their
        integration id and stay queryable.
        """
        with self._mutate(integration_id, owner) as integration:
            integration.deleted_at = utcnow()
            integration.status = IntegrationStatus.SUSPENDED.value
        logger.info(f"Deleted integration {integration_id}")

    def touch(self, integration_id: uuid.UUID) -> None:
        """Record activity on an integration."""
        with self._locks.hold(integration_id):
            with self.database.session() as session:
                integration = IntegrationRepository(session).get_live(integration_id)
                if integration is not None:
                    integration.last_activity_at = utcnow()

    @contextmanager
    def _mutate(
        self, integration_id: uuid.UUID, owner: str, allow_suspended: bool = True
    ) -> Iterator[Integration]:
        """Lock, open a transaction and check ownership around one change."""
        with self._locks.hold(integration_id):
            with self.database.session() as session:
                integration = IntegrationRepository(session).get_for_update(integration_id)
                if integration is None or integration.is_deleted:
                    raise NotFoundError(f"Integration {integration_id} not found")
                if integration.owner_id != owner:
                    raise PermissionDeniedError(
                        f"Integration {integration_id} belongs to another owner"
                    )
                if integration.is_suspended and not allow_suspended:
                    raise IntegrationSuspendedError(str(integration_id))
                yield integration
