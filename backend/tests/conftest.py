"""Pytest configuration for backend tests.

Every test runs against in-memory collaborators: no database and no language
model are needed.
"""

import os

import pytest
from _pytest.monkeypatch import MonkeyPatch

import auth
from app import create_app
from llm.executor import ToolDispatcher
from llm.tools import TOOL_REGISTRY
from pipeline.orchestrator import ConversationOrchestrator
from fakes import InMemoryFinanceFacade, InMemoryHistoryStore, ScriptedGateway

TEST_USER = {"id": 1, "name": "Test User", "email": "testuser@example.com", "role": "user"}


@pytest.fixture(scope="session", autouse=True)
def _test_env():
    """Ensure env vars exist during tests without touching real secrets."""
    mp = MonkeyPatch()
    mp.setenv("SECRET_KEY", os.getenv("SECRET_KEY", "test-secret-key"))
    mp.setenv("LLM_API_KEY", os.getenv("LLM_API_KEY", "test-llm-key"))
    yield
    mp.undo()


@pytest.fixture()
def user():
    return dict(TEST_USER)


@pytest.fixture()
def facade():
    return InMemoryFinanceFacade()


@pytest.fixture()
def history_store():
    return InMemoryHistoryStore()


@pytest.fixture()
def gateway():
    return ScriptedGateway()


@pytest.fixture()
def dispatcher(facade):
    return ToolDispatcher(facade, TOOL_REGISTRY)


@pytest.fixture()
def orchestrator(gateway, dispatcher, facade, history_store):
    """Orchestrator with pacing disabled"""
    return ConversationOrchestrator(
        gateway,
        dispatcher,
        facade,
        history_store,
        TOOL_REGISTRY,
        chunk_size=50,
        chunk_delay=0,
    )


@pytest.fixture()
def app(gateway, facade, history_store):
    return create_app(
        {"TESTING": True},
        gateway=gateway,
        facade=facade,
        history_store=history_store,
        sleep=lambda seconds: None,
    )


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture()
def logged_in(monkeypatch, user):
    """Authenticate every request as ``user``"""
    monkeypatch.setattr(auth, "get_current_user", lambda: user)
    return user
