"""
DistributionHub: per-symbol fan-out of tick batches to connected clients.
"""

import asyncio
import itertools
import logging
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional, Set

from papermarket.core.errors import NotFoundError
from papermarket.core.types import Tick
from papermarket.simulation.market import MarketSimulator

logger = logging.getLogger(__name__)

SNAPSHOT_TRADES = 25
THROTTLE_EVERY = 2


class Subscriber:
    """
    One connected client.

    Outgoing messages go into a bounded buffer; when it is full the oldest
    message is dropped, so a slow client never blocks the tick loop.
    """

    def __init__(self, client_id: str, user_id: Optional[str] = None, queue_size: int = 256):
        self.id = client_id
        self.user_id = user_id
        self.symbols: Set[str] = set()
        self.dropped = 0
        self.closed = False
        self._buffer: Deque[Dict[str, Any]] = deque(maxlen=queue_size)
        self._ready = asyncio.Event()

    def __repr__(self) -> str:
        return f"Subscriber(id={self.id!r}, symbols={sorted(self.symbols)})"

    def send(self, event: str, data: Any) -> None:
        """Queue a push frame {event, data} without blocking."""
        if self.closed:
            return
        if len(self._buffer) == self._buffer.maxlen:
            self.dropped += 1
            logger.debug(f"Subscriber {self.id} buffer full, dropped oldest message ({self.dropped} total)")
        self._buffer.append({"event": event, "data": data})
        self._ready.set()

    def drain(self) -> List[Dict[str, Any]]:
        """Remove and return every queued message."""
        messages = list(self._buffer)
        self._buffer.clear()
        self._ready.clear()
        return messages

    async def next_message(self) -> Optional[Dict[str, Any]]:
        """Wait for the next queued message; None once the subscriber is closed."""
        while not self._buffer:
            if self.closed:
                return None
            self._ready.clear()
            await self._ready.wait()
        return self._buffer.popleft()

    def close(self) -> None:
        self.closed = True
        self._ready.set()


class DistributionHub:
    """
    Routes market data to subscribers.

    One group per symbol. On every tick batch the hub:
    - broadcasts the whole batch as `tick:all` (every second batch)
    - sends each symbol's `tick` to that symbol's group
    - sends a fresh `orderbook` to each non-empty group (every second batch)
    - sends 1-3 `newTrades` prints to each non-empty group
    """

    def __init__(self, simulator: MarketSimulator, queue_size: int = 256):
        """
        Initialize hub.

        Args:
            simulator: Market data source
            queue_size: Per-subscriber outgoing buffer size
        """
        self.simulator = simulator
        self.queue_size = queue_size
        self.subscribers: Dict[str, Subscriber] = {}
        self.groups: Dict[str, Set[str]] = {}
        self.batch_count = 0
        self._ids = itertools.count(1)

    @property
    def connection_count(self) -> int:
        return len(self.subscribers)

    def connect(self, user_id: Optional[str] = None, client_id: Optional[str] = None) -> Subscriber:
        client_id = client_id or f"c-{next(self._ids)}"
        subscriber = Subscriber(client_id, user_id=user_id, queue_size=self.queue_size)
        self.subscribers[client_id] = subscriber
        logger.info(f"Client {client_id} connected ({self.connection_count} total)")
        return subscriber

    def disconnect(self, client_id: str) -> None:
        subscriber = self.subscribers.pop(client_id, None)
        if subscriber is None:
            return
        for symbol in list(subscriber.symbols):
            self._leave(subscriber, symbol)
        subscriber.close()
        logger.info(f"Client {client_id} disconnected ({self.connection_count} total)")

    def _get(self, client_id: str) -> Subscriber:
        subscriber = self.subscribers.get(client_id)
        if subscriber is None:
            raise NotFoundError(f"Unknown client: {client_id}")
        return subscriber

    def subscribe(self, client_id: str, symbol: str) -> bool:
        """
        Join a symbol group and push a snapshot to the subscriber.

        Returns:
            True if the client was not already in the group

        Raises:
            NotFoundError: Unknown client or symbol
        """
        subscriber = self._get(client_id)
        snapshot = self.snapshot(symbol)

        joined = symbol not in subscriber.symbols
        if joined:
            subscriber.symbols.add(symbol)
            self.groups.setdefault(symbol, set()).add(client_id)
            logger.debug(f"Client {client_id} subscribed to {symbol}")

        subscriber.send("snapshot", snapshot)
        return joined

    def unsubscribe(self, client_id: str, symbol: str) -> bool:
        """
        Leave a symbol group.

        Returns:
            True if the client was in the group
        """
        subscriber = self._get(client_id)
        if symbol not in subscriber.symbols:
            return False
        self._leave(subscriber, symbol)
        logger.debug(f"Client {client_id} unsubscribed from {symbol}")
        return True

    def _leave(self, subscriber: Subscriber, symbol: str) -> None:
        subscriber.symbols.discard(symbol)
        members = self.groups.get(symbol)
        if members is not None:
            members.discard(subscriber.id)
            if not members:
                del self.groups[symbol]

    def snapshot(self, symbol: str) -> Dict[str, Any]:
        """Point-in-time quote, order book and recent trades for one symbol."""
        return {
            "symbol": symbol,
            "quote": self.simulator.get_quote(symbol),
            "orderbook": self.simulator.get_order_book(symbol).to_dict(),
            "trades": [t.to_dict() for t in self.simulator.get_recent_trades(symbol, SNAPSHOT_TRADES)],
        }

    def broadcast(self, event: str, data: Any) -> None:
        for subscriber in self.subscribers.values():
            subscriber.send(event, data)

    def publish(self, symbol: str, event: str, data: Any) -> None:
        for client_id in self.groups.get(symbol, ()):
            self.subscribers[client_id].send(event, data)

    def attach(self, engine) -> Callable[[], None]:
        """Register on_tick with a TickEngine; returns the detach callable."""
        return engine.add_listener(self.on_tick)

    def on_tick(self, batch: List[Tick]) -> None:
        """Fan one tick batch out to subscribers."""
        self.batch_count += 1
        throttled_turn = self.batch_count % THROTTLE_EVERY == 0

        if throttled_turn and self.subscribers:
            self.broadcast("tick:all", [tick.to_dict() for tick in batch])

        for tick in batch:
            if not self.groups.get(tick.symbol):
                continue
            try:
                self.publish(tick.symbol, "tick", tick.to_dict())
                if throttled_turn:
                    self.publish(tick.symbol, "orderbook", self.simulator.get_order_book(tick.symbol).to_dict())
                trades = self.simulator.get_live_trades(tick.symbol)
                self.publish(tick.symbol, "newTrades", {
                    "symbol": tick.symbol,
                    "trades": [t.to_dict() for t in trades],
                })
            except Exception:
                logger.exception(f"Failed to distribute {tick.symbol}")
