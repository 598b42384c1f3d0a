"""Global test configuration and fixtures."""

import pytest
from fastapi.testclient import TestClient
from test_helpers import FakeClock, InteractionSigner

from prism_keys.config import Settings
from prism_keys.container import Container, configure_services
from prism_keys.db.memory_store import InMemoryKeyStore
from prism_keys.keys.audit import AuditLog
from prism_keys.keys.issuance import KeyIssuanceEngine
from prism_keys.keys.validation import KeyValidationService

ISSUER_ID = "111111111111111111"
USER_ID = "222222222222222222"
OTHER_ID = "333333333333333333"
VIP_ID = "444444444444444444"


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryKeyStore()


@pytest.fixture
def interaction_signer():
    return InteractionSigner()


@pytest.fixture
def settings(interaction_signer):
    """Settings with one allowlisted issuer and one dashboard VIP."""
    return Settings(
        discord_token="",
        discord_client_id="app-id",
        discord_public_key=interaction_signer.public_key_hex,
        whitelist_users=frozenset({ISSUER_ID}),
        elevated_issuers=frozenset({ISSUER_ID}),
        vip_user_ids=frozenset({VIP_ID}),
        key_store="memory",
        session_secret="test-session-secret",
    )


@pytest.fixture
def audit(store, clock):
    return AuditLog(store, clock=clock)


@pytest.fixture
def engine(store, audit, settings, clock):
    return KeyIssuanceEngine(
        store,
        audit,
        elevated_issuers=settings.elevated_issuers,
        durations=settings.tier_durations(),
        clock=clock,
        badge_ids=settings.whitelist_users,
    )


@pytest.fixture
def validation(store, audit, clock):
    return KeyValidationService(store, audit, clock=clock)


@pytest.fixture
def container(settings, store, clock):
    """Fully configured container backed by the in-memory store and fake clock."""
    container = Container()
    container.register_instance("clock", clock)
    configure_services(settings, container)
    container.register_instance("store", store)
    return container


@pytest.fixture
def api_client(container):
    """TestClient with the test container injected; lifespan is not run."""
    from prism_keys.service.main import app, limiter

    limiter.enabled = False
    client = TestClient(app)
    client.app.state.container = container
    yield client
    limiter.enabled = True


@pytest.fixture
def vip_client(api_client, container):
    """TestClient carrying a valid VIP session cookie."""
    from prism_keys.auth.session import SESSION_COOKIE

    api_client.cookies.set(SESSION_COOKIE, container.get("session_signer").sign(VIP_ID))
    return api_client
