"""Dependency injection container wiring the Prism key service together.

Services are registered under string names and resolved lazily. The FastAPI
application keeps one container on ``app.state.container``; route handlers
and authentication dependencies resolve what they need from it, which lets
tests swap in an in-memory store or mocks without touching module globals.

Service Lifetimes:
    - Singleton: created once on first resolution (store, HTTP clients, engine)
    - Instance: pre-created objects such as ``settings`` and ``clock``

Registered Services:
    settings, clock, store, presence, discord_rest, notifier, audit,
    issuance_engine, validation_service, sweeper, command_router,
    interaction_verifier, session_signer, oauth_client
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, Callable, Optional, TypeVar, Union

import structlog

from .config import Settings, get_settings

logger = structlog.get_logger()

T = TypeVar("T")


class ServiceDescriptor:
    """Registration metadata: factory and named dependencies."""

    def __init__(
        self,
        service_type: Union[type[T], str],
        implementation: Union[type[T], Callable[..., T], Callable[..., Any]],
        dependencies: Optional[list] = None,
    ):
        self.service_type = service_type
        self.implementation = implementation
        self.dependencies = dependencies or []


def _service_name(service_type: Union[type, str]) -> str:
    return service_type if isinstance(service_type, str) else service_type.__name__


class Container:
    """Lightweight dependency injection container.

    Dependencies are resolved recursively before a factory is called, in the
    order they were declared. A service that depends on itself, directly or
    through others, raises ``ValueError``.
    """

    def __init__(self):
        self._services: dict[Union[type, str], ServiceDescriptor] = {}
        self._instances: dict[Union[type, str], Any] = {}
        self._resolving: set = set()

    def register_singleton(
        self,
        service_type: Union[type[T], str],
        implementation: Union[type[T], Callable[..., T], Callable[..., Any]],
        dependencies: Optional[list] = None,
    ) -> "Container":
        self._services[service_type] = ServiceDescriptor(service_type, implementation, dependencies)
        return self

    def register_instance(self, service_type: Union[type[T], str], instance: T) -> "Container":
        """Register a ready-made object, e.g. settings or a test double."""
        self._instances[service_type] = instance
        return self

    def get(self, service_type: Union[type[T], str]) -> T:
        """Resolve a service, creating it and its dependencies as needed.

        Raises:
            ValueError: If the service is not registered or a cycle is detected.
        """
        service_name = _service_name(service_type)

        if service_type in self._resolving:
            raise ValueError(f"Circular dependency detected for {service_name}")

        if service_type in self._instances:
            return self._instances[service_type]

        if service_type not in self._services:
            raise ValueError(f"Service {service_name} is not registered")

        descriptor = self._services[service_type]
        self._resolving.add(service_type)
        try:
            resolved_dependencies = [self.get(dep_type) for dep_type in descriptor.dependencies]
            instance = descriptor.implementation(*resolved_dependencies)

            self._instances[service_type] = instance

            logger.debug(
                "Service resolved successfully",
                service=service_name,
                dependencies=[_service_name(dep) for dep in descriptor.dependencies],
            )
            return instance
        finally:
            self._resolving.discard(service_type)

    def is_registered(self, service_type: Union[type[T], str]) -> bool:
        return service_type in self._services or service_type in self._instances

    async def dispose_async(self):
        """Await ``close()`` on every instantiated service that has an async one.

        A failing close is logged and does not stop the others.
        """
        for instance in self._instances.values():
            if hasattr(instance, "close") and asyncio.iscoroutinefunction(instance.close):
                try:
                    await instance.close()
                except Exception as e:
                    logger.error("Error disposing service", service=type(instance).__name__, error=str(e))

        self._instances.clear()
        logger.info("Container disposed successfully")


_container: Optional[Container] = None


def get_container() -> Container:
    """Return the process-wide container, creating it on first use."""
    global _container
    if _container is None:
        _container = Container()
    return _container


def configure_services(settings: Optional[Settings] = None, container: Optional[Container] = None) -> Container:
    """Register every Prism key service.

    Args:
        settings: Configuration to use; defaults to ``get_settings()``.
        container: Container to populate; defaults to the global one.

    Returns:
        Container: The populated container.
    """
    container = container or get_container()
    settings = settings or get_settings()

    # Local imports keep module import order independent of the container
    from .auth.discord_oauth import DiscordOAuthClient
    from .auth.session import SessionSigner
    from .bot.commands import CommandRouter
    from .bot.interactions import InteractionVerifier
    from .bot.notifier import LogChannelNotifier
    from .bot.presence import BotPresence
    from .bot.rest import DiscordRestClient
    from .db import load_key_store
    from .keys.audit import AuditLog
    from .keys.clock import utc_now
    from .keys.issuance import KeyIssuanceEngine
    from .keys.sweeper import ExpirationSweeper
    from .keys.validation import KeyValidationService

    container.register_instance("settings", settings)
    if not container.is_registered("clock"):
        container.register_instance("clock", utc_now)

    container.register_singleton("store", load_key_store, ["settings"])
    container.register_singleton("presence", BotPresence, ["clock"])
    container.register_singleton("discord_rest", lambda s: DiscordRestClient(s.discord_token), ["settings"])
    container.register_singleton(
        "notifier",
        lambda rest, store, presence, s, clock: LogChannelNotifier(
            rest, store, presence, fallback_channel_id=s.logs_channel_id, clock=clock
        ),
        ["discord_rest", "store", "presence", "settings", "clock"],
    )
    container.register_singleton("audit", AuditLog, ["store", "notifier", "clock"])
    container.register_singleton(
        "issuance_engine",
        lambda store, audit, s, clock: KeyIssuanceEngine(
            store,
            audit,
            elevated_issuers=s.elevated_issuers,
            durations=s.tier_durations(),
            clock=clock,
            badge_ids=s.whitelist_users,
        ),
        ["store", "audit", "settings", "clock"],
    )
    container.register_singleton("validation_service", KeyValidationService, ["store", "audit", "clock"])
    container.register_singleton(
        "sweeper",
        lambda store, audit, s, clock: ExpirationSweeper(store, audit, interval=s.sweep_interval_seconds, clock=clock),
        ["store", "audit", "settings", "clock"],
    )
    container.register_singleton(
        "command_router",
        lambda engine, store, audit, s, clock: CommandRouter(
            engine,
            store,
            audit,
            guild_id=s.guild_id,
            command_channel_id=s.command_channel_id,
            log_channel_admins=s.whitelist_users,
            lifetime_days=s.lifetime_key_days,
            clock=clock,
        ),
        ["issuance_engine", "store", "audit", "settings", "clock"],
    )
    container.register_singleton("interaction_verifier", lambda s: InteractionVerifier(s.discord_public_key), ["settings"])
    container.register_singleton("session_signer", lambda s, clock: SessionSigner(s.session_secret, clock=clock), ["settings", "clock"])
    container.register_singleton(
        "oauth_client",
        lambda s: DiscordOAuthClient(s.discord_client_id, s.discord_client_secret, s.oauth_redirect_uri),
        ["settings"],
    )

    logger.info("Service container configured successfully", key_store=settings.key_store)
    return container


@asynccontextmanager
async def container_lifespan(container: Optional[Container] = None):
    """Yield the container and dispose of its async resources on exit."""
    container = container or get_container()
    try:
        logger.info("Starting service container")
        yield container
    finally:
        logger.info("Disposing service container")
        await container.dispose_async()
