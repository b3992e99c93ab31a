"""
Dependency injection container for the pipeline components.

Every component receives its collaborators from here or through constructor
arguments; nothing holds pipeline data in module globals. Tests build their
own container over a ``MemoryStore``.
"""

from contextlib import asynccontextmanager
from typing import Any, TypeVar

from ..observability.logging import get_logger
from .settings import Settings, get_settings

logger = get_logger(__name__)

T = TypeVar("T")


class Container:
    """Dependency injection container with async lifecycle management."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self._services: dict[str, Any] = {}
        self._factories: dict[str, Any] = {}
        self._singletons: dict[str, Any] = {}

    def register_factory(self, name: str, factory: Any) -> None:
        """Register a factory ``(container) -> service``, built on first use."""
        self._factories[name] = factory
        self._services.pop(name, None)

    def register_singleton(self, name: str, instance: Any) -> None:
        """Register a ready-made instance."""
        self._singletons[name] = instance

    def get(self, name: str, default: Any = None) -> Any:
        """Get a service by name."""
        if name in self._singletons:
            return self._singletons[name]

        if name in self._services:
            return self._services[name]

        if name in self._factories:
            instance = self._factories[name](self)
            self._services[name] = instance
            return instance

        return default

    def require(self, name: str) -> Any:
        """Like ``get`` but raises ``KeyError`` for an unknown service."""
        service = self.get(name)
        if service is None:
            raise KeyError(f"Service not registered: {name}")
        return service

    async def cleanup(self) -> None:
        """Close the services that hold external resources."""
        for name, service in list(self._services.items()) + list(self._singletons.items()):
            close = getattr(service, "close", None)
            if close is None:
                continue
            try:
                await close()
            except Exception as e:
                logger.error("Error cleaning up service", service=name, error=str(e))

        self._services.clear()

    @asynccontextmanager
    async def lifespan(self):
        """Async context manager for container lifecycle."""
        try:
            yield self
        finally:
            await self.cleanup()


def setup_container(settings: Settings | None = None) -> Container:
    """Container with the default pipeline factories.

    ``pipeline_runner`` needs a ``stage_registry`` to be registered first.
    """
    container = Container(settings)

    def _document_store_factory(c: Container):
        from ..storage.documents import create_document_store

        return create_document_store(c.settings.storage)

    def _state_manager_factory(c: Container):
        from ..core.state import PipelineStateManager

        return PipelineStateManager(c.require("document_store"))

    def _topic_queue_factory(c: Container):
        from ..queues.topics import TopicQueue

        return TopicQueue(c.require("document_store"), c.settings)

    def _review_queue_factory(c: Container):
        from ..queues.review import ReviewQueue

        return ReviewQueue(c.require("document_store"), c.require("topic_queue"), c.settings)

    def _pipeline_runner_factory(c: Container):
        from ..core.pipeline import PipelineRunner

        return PipelineRunner(
            registry=c.require("stage_registry"),
            state_manager=c.require("state_manager"),
            topic_queue=c.require("topic_queue"),
            review_queue=c.require("review_queue"),
            settings=c.settings,
        )

    container.register_factory("document_store", _document_store_factory)
    container.register_factory("state_manager", _state_manager_factory)
    container.register_factory("topic_queue", _topic_queue_factory)
    container.register_factory("review_queue", _review_queue_factory)
    container.register_factory("pipeline_runner", _pipeline_runner_factory)

    return container
