"""
Pytest configuration and fixtures for JSON Oracle tests.

This module provides shared fixtures for the database, the integration
registry, scripted completion backends and the FastAPI test client.
"""

import asyncio
import json
from typing import Any, Callable, Generator, Optional, Union

import httpx
import jwt
import pytest

from jsonoracle.config import Settings
from jsonoracle.db.connection import Database
from jsonoracle.exceptions import ModelError, ModelUnavailable
from jsonoracle.inference import CompletionBackend, CompletionResult, ModelClient, ModelProvider
from jsonoracle.integrations import IntegrationRegistry
from jsonoracle.models.db import Integration, TransportKind

OWNER = "auth0|owner-1"
OTHER_OWNER = "auth0|owner-2"
IDENTITY_SECRET = "test-identity-secret-0123456789abcdef"

# Reply for a scripted model: text, an exception to raise, or a callable of the prompt
Reply = Union[str, Exception, Callable[[str], str]]


def structured_reply(
    prose: str,
    insights: Optional[list[dict[str, Any]]] = None,
    recommendations: Optional[list[str]] = None,
) -> str:
    """A model answer that follows the output contract."""
    block = json.dumps(
        {"insights": insights or [], "recommendations": recommendations or []}
    )
    return f"{prose}\n\n```json\n{block}\n```"


class ScriptedBackend(CompletionBackend):
    """
    Completion backend that answers from a per-model script.

    Each model has a list of replies consumed in order; the last one repeats.
    Every call is recorded as (model_name, prompt).
    """

    def __init__(self, script: Optional[dict[str, list[Reply]]] = None, delay: float = 0.0):
        self.script = {name: list(replies) for name, replies in (script or {}).items()}
        self.delay = delay
        self.calls: list[tuple[str, str]] = []
        self.closed = False

    @property
    def provider(self) -> ModelProvider:
        return ModelProvider.DEFAULT

    async def complete(self, model_name: str, prompt: str) -> CompletionResult:
        self.calls.append((model_name, prompt))
        if self.delay:
            await asyncio.sleep(self.delay)

        replies = self.script.get(model_name)
        if not replies:
            reply: Reply = structured_reply(f"Analysis by {model_name}.")
        elif len(replies) > 1:
            reply = replies.pop(0)
        else:
            reply = replies[0]

        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            reply = reply(prompt)
        return CompletionResult(text=reply, model=model_name)

    def calls_for(self, model_name: str) -> list[str]:
        return [prompt for name, prompt in self.calls if name == model_name]

    async def aclose(self) -> None:
        self.closed = True


class BlockingBackend(CompletionBackend):
    """Backend whose calls wait until ``release`` is set."""

    def __init__(self, reply: str = ""):
        self.reply = reply or structured_reply("Blocked analysis.")
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    @property
    def provider(self) -> ModelProvider:
        return ModelProvider.DEFAULT

    async def complete(self, model_name: str, prompt: str) -> CompletionResult:
        self.started.set()
        await self.release.wait()
        return CompletionResult(text=self.reply, model=model_name)


def make_model_client(backend: CompletionBackend, timeout: float = 5.0) -> ModelClient:
    return ModelClient({ModelProvider.DEFAULT: backend}, default_timeout=timeout)


def unavailable(model: str) -> ModelError:
    return ModelUnavailable(model, f"{model} is down")


@pytest.fixture
def database() -> Generator[Database, None, None]:
    """In-memory SQLite database with all tables created."""
    db = Database("sqlite://")
    db.init_db()
    yield db
    db.dispose()


@pytest.fixture
def registry(database: Database) -> IntegrationRegistry:
    return IntegrationRegistry(database, api_key_namespace="jo_test_")


@pytest.fixture
def polling_integration(registry: IntegrationRegistry) -> tuple[Integration, str]:
    """A polling integration and its plaintext API key."""
    return registry.register(
        owner=OWNER,
        name="Polling Integration",
        transport_kind=TransportKind.POLLING,
    )


@pytest.fixture
def webhook_integration(registry: IntegrationRegistry) -> tuple[Integration, str]:
    """A webhook integration and its plaintext API key."""
    return registry.register(
        owner=OWNER,
        name="Webhook Integration",
        transport_kind=TransportKind.WEBHOOK,
        webhook_url="https://hooks.example.com/results",
    )


@pytest.fixture
def scripted_backend() -> ScriptedBackend:
    return ScriptedBackend()


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Settings for an isolated, fully in-process application."""
    return Settings(
        _env_file=None,
        database_url_override="sqlite://",
        default_models=["llama2"],
        api_key_namespace="jo_test_",
        rate_limit_per_minute=0,
        turn_retry_base_delay=0.01,
        turn_retry_max_delay=0.02,
        delivery_base_delay=0.01,
        delivery_max_delay=0.02,
        watch_root=str(tmp_path),
        watch_use_polling=True,
        identity_shared_secret=IDENTITY_SECRET,
        log_file_enabled=False,
        log_console_enabled=False,
    )


@pytest.fixture
def webhook_requests() -> list[httpx.Request]:
    """Requests received by the stub webhook endpoint."""
    return []


@pytest.fixture
def container(test_settings: Settings, scripted_backend: ScriptedBackend, webhook_requests):
    """A ServiceContainer on in-memory SQLite with a scripted model backend."""
    from jsonoracle.container import ServiceContainer

    def endpoint(request: httpx.Request) -> httpx.Response:
        webhook_requests.append(request)
        return httpx.Response(200)

    return ServiceContainer(
        settings=test_settings,
        model_client=make_model_client(scripted_backend),
        webhook_client=httpx.AsyncClient(transport=httpx.MockTransport(endpoint)),
    )


@pytest.fixture
def api_client(container):
    """FastAPI test client; the lifespan starts and stops the container."""
    from fastapi.testclient import TestClient

    from jsonoracle.api.app import create_app

    app = create_app(container=container, configure_logging=False)
    with TestClient(app) as client:
        yield client


def owner_token(subject: str = OWNER, secret: str = IDENTITY_SECRET) -> str:
    return jwt.encode({"sub": subject}, secret, algorithm="HS256")


@pytest.fixture
def owner_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {owner_token()}"}


@pytest.fixture
def other_owner_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {owner_token(OTHER_OWNER)}"}
