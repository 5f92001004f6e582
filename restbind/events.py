"""
Resource events for restbind.

Each ResourceBinder owns a ResourceEvents registry. Listeners are
registered at startup; once the binder starts serving, the registry is
frozen and further registration raises.

Events:
    query   - projected list of a list request
    detail  - projected entity of a detail request
    insert  - projected entity after it was created
    update  - projected entity after it was updated
    remove  - entity that was deleted (emitted after the response is sent)
"""
from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

from .pipeline.step import call_hook

logger = logging.getLogger(__name__)

EVENTS = ("query", "detail", "insert", "update", "remove")

Listener = Callable[[Any], "Awaitable[None] | None"]


class ResourceEvents:
    """
    Observer registry for resource events.

    Listeners run in registration order and may be plain functions or
    coroutine functions. A listener error propagates to the emitter.

    Example:
        events = ResourceEvents()
        events.on("insert", lambda item: audit.append(item))
        events.freeze()
        await events.emit("insert", item)
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = {name: [] for name in EVENTS}
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> None:
        """Disallow further registration. Called when serving begins."""
        if not self._frozen:
            counts = {name: len(items) for name, items in self._listeners.items() if items}
            logger.debug(f"Event registry frozen with listeners: {counts}")
        self._frozen = True

    def on(self, event: str, listener: Listener) -> Listener:
        """
        Register a listener for ``event``.

        Returns the listener so the method can be used as a decorator
        via ``events.listener(event)``.

        Raises:
            ValueError: If ``event`` is not a resource event
            RuntimeError: If the registry is frozen
        """
        self._check_event(event)
        if self._frozen:
            raise RuntimeError(
                f"Cannot register '{event}' listener: resource is already serving"
            )
        self._listeners[event].append(listener)
        return listener

    def listener(self, event: str) -> Callable[[Listener], Listener]:
        """Decorator form of on()."""

        def decorator(fn: Listener) -> Listener:
            return self.on(event, fn)

        return decorator

    def off(self, event: str, listener: Listener) -> None:
        """Remove a previously registered listener."""
        self._check_event(event)
        if self._frozen:
            raise RuntimeError(
                f"Cannot remove '{event}' listener: resource is already serving"
            )
        try:
            self._listeners[event].remove(listener)
        except ValueError:
            logger.warning(f"Listener {listener!r} was not registered for '{event}'")

    def listeners(self, event: str) -> list[Listener]:
        """Get a copy of the listeners registered for ``event``."""
        self._check_event(event)
        return list(self._listeners[event])

    async def emit(self, event: str, payload: Any) -> None:
        """Deliver ``payload`` to every listener of ``event``, in order."""
        self._check_event(event)
        for listener in self._listeners[event]:
            await call_hook(listener, payload)

    async def emit_safely(self, event: str, payload: Any) -> None:
        """
        Emit, logging listener errors instead of raising.

        Used after a response has already been sent, when there is no
        caller left to report the error to.
        """
        try:
            await self.emit(event, payload)
        except Exception as e:
            logger.error(f"Listener for '{event}' failed after response: {e}", exc_info=True)

    def _check_event(self, event: str) -> None:
        if event not in self._listeners:
            raise ValueError(f"Unknown resource event '{event}', expected one of {EVENTS}")


__all__ = ["EVENTS", "Listener", "ResourceEvents"]
