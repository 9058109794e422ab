"""Observer protocol and EventBus for typed synchronous event dispatch.

Profiling tasks and stages emit events; observers (console output, progress
counters, timing) react to them without touching population state.

Design invariants:
- Delivery is *synchronous* in the emitting thread. Leaf tasks emit from pool
  workers, so an observer that keeps counters must lock them.
- Subscription is *typed*: an observer subscribes to one ``Event`` subclass,
  or to ``Event`` itself to receive everything.
- Dispatch is *fault-tolerant*: an observer that raises is logged and the
  remaining observers still receive the event.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from typing import Protocol, runtime_checkable

from nucleusprofile.engine.events import Event

logger = logging.getLogger(__name__)


@runtime_checkable
class Observer(Protocol):
    """Structural protocol for event observers.

    Any object with an ``on_event(event)`` method qualifies.

    Example::

        class Recorder:
            def on_event(self, event: Event) -> None:
                print(type(event).__name__)

        bus = EventBus()
        bus.subscribe(IndividualProcessed, Recorder())
    """

    def on_event(self, event: Event) -> None:
        """Receive a dispatched event."""
        ...


class EventBus:
    """Typed, synchronous event dispatcher.

    An emitted event reaches observers subscribed to its exact type first,
    then observers of each ancestor type in MRO order. An observer subscribed
    to several matching types receives the event once.
    """

    def __init__(self) -> None:
        self._subscriptions: dict[type[Event], list[Observer]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(self, event_type: type[Event], observer: Observer) -> None:
        """Register *observer* for *event_type* (``Event`` for all events)."""
        with self._lock:
            self._subscriptions[event_type].append(observer)

    def unsubscribe(self, event_type: type[Event], observer: Observer) -> None:
        """Remove *observer* from *event_type*; a no-op if not subscribed."""
        with self._lock:
            observers = self._subscriptions.get(event_type)
            if observers and observer in observers:
                observers.remove(observer)

    def emit(self, event: Event) -> None:
        """Deliver *event* to every matching observer.

        Args:
            event: The event to dispatch.
        """
        with self._lock:
            targets: list[Observer] = []
            seen: set[int] = set()
            for ancestor in type(event).__mro__:
                if not (isinstance(ancestor, type) and issubclass(ancestor, Event)):
                    continue
                for obs in self._subscriptions.get(ancestor, []):
                    if id(obs) not in seen:
                        seen.add(id(obs))
                        targets.append(obs)
        for obs in targets:
            try:
                obs.on_event(event)
            except Exception:
                logger.warning(
                    "Observer %r raised an exception on event %r; "
                    "continuing delivery to remaining observers.",
                    obs,
                    event,
                    exc_info=True,
                )


__all__ = ["EventBus", "Observer"]
