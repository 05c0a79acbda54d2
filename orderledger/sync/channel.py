"""
Push-channel client interface.

The synchronizer never talks to a socket directly; it is handed something
that satisfies ChannelClient. InMemoryChannel delivers synchronously and can
replay its history on reconnect, which is how an at-least-once channel
behaves after a dropped connection.
"""
from typing import Any, Callable, Dict, List, Protocol, Set, Tuple

from orderledger.common.logging import get_logger

logger = get_logger(__name__)

Listener = Callable[[Dict[str, Any]], None]
Unsubscribe = Callable[[], None]


class ChannelClient(Protocol):
    """connect/on/emit/disconnect, mirroring a socket.io style client"""

    def connect(self) -> None:
        ...

    def on(self, event: str, callback: Listener) -> Unsubscribe:
        ...

    def emit(self, event: str, payload: Dict[str, Any]) -> None:
        ...

    def disconnect(self) -> None:
        ...


class InMemoryChannel:
    """Synchronous channel for tests and the console playground"""

    def __init__(self):
        self.connected = False
        self.listeners: Dict[str, List[Listener]] = {}
        self.history: List[Tuple[str, Dict[str, Any]]] = []

    def connect(self) -> None:
        self.connected = True
        logger.info("Channel connected")

    def disconnect(self) -> None:
        self.connected = False
        logger.info("Channel disconnected")

    def on(self, event: str, callback: Listener) -> Unsubscribe:
        self.listeners.setdefault(event, []).append(callback)

        def unsubscribe() -> None:
            callbacks = self.listeners.get(event, [])
            if callback in callbacks:
                callbacks.remove(callback)

        return unsubscribe

    def emit(self, event: str, payload: Dict[str, Any]) -> None:
        """Deliver an event to every listener; dropped while disconnected."""
        if not self.connected:
            logger.warning("Channel not connected; dropping %s", event)
            return
        self.history.append((event, payload))
        self._deliver(event, payload)

    def reconnect(self, replay: bool = True) -> None:
        """
        Drop and restore the connection. Listeners survive; with replay the
        whole history is delivered again in its original order.
        """
        self.disconnect()
        self.connect()
        if replay:
            logger.info("Replaying %d events after reconnect", len(self.history))
            for event, payload in list(self.history):
                self._deliver(event, payload)

    def subscribed_events(self) -> Set[str]:
        return {event for event, callbacks in self.listeners.items() if callbacks}

    def _deliver(self, event: str, payload: Dict[str, Any]) -> None:
        for callback in list(self.listeners.get(event, [])):
            callback(payload)
