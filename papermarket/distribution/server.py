"""
Websocket + HTTP server for the market simulator.

Websocket clients send JSON frames {event, ...}; the server pushes {event, data}.
Plain HTTP GET requests under /api are answered on the same port.
"""

import asyncio
import json
import logging
import time
from http import HTTPStatus
from typing import Any, Dict, Mapping, Optional, Tuple
from urllib.parse import parse_qs, unquote, urlsplit

from websockets.asyncio.server import serve
from websockets.exceptions import ConnectionClosed

from papermarket import __version__
from papermarket.config import Settings
from papermarket.core.errors import PaperMarketError, ValidationError
from papermarket.core.sanitize import sanitize_query, sanitize_symbol
from papermarket.core.types import TriggerMode, now_ms
from papermarket.metrics.calculator import MetricsCalculator
from papermarket.simulation.market import MarketSimulator
from papermarket.trading.api import TradingAPI, error_status
from papermarket.trading.margin import MarginModel
from papermarket.trading.positions import PositionManager
from papermarket.trading.store import AccountStore
from papermarket.trading.triggers import TriggerEvaluator
from .hub import DistributionHub, Subscriber

logger = logging.getLogger(__name__)

HttpResult = Tuple[int, Any]


class MarketServer:
    """
    Wires the simulator, hub and trading routes to network clients.

    Message handling (handle_message, http_get) does not touch the network,
    so it can be driven directly.
    """

    def __init__(
        self,
        settings: Settings,
        simulator: MarketSimulator,
        store: AccountStore,
        hub: Optional[DistributionHub] = None,
        api: Optional[TradingAPI] = None,
    ):
        """
        Initialize server.

        Args:
            settings: Runtime configuration
            simulator: Market data source
            store: Account persistence
            hub: Subscriber fan-out (built from settings when omitted)
            api: Trading routes (built from settings when omitted)
        """
        self.settings = settings
        self.simulator = simulator
        self.store = store
        self.hub = hub or DistributionHub(simulator, queue_size=settings.subscriber_queue_size)

        if api is None:
            positions = PositionManager(
                store,
                MarginModel(mis_rate=settings.mis_margin_rate),
                max_add_money=settings.max_add_money,
            )
            api = TradingAPI(
                store,
                positions,
                TriggerEvaluator(store, positions),
                metrics=MetricsCalculator(settings.default_balance),
                price_source=simulator.live_prices,
                default_user=settings.default_user,
                recent_limit=settings.recent_limit,
            )
        self.api = api
        self.triggers = api.triggers

        self.trigger_mode = TriggerMode(settings.trigger_mode)
        self.started_at = time.monotonic()

        self.hub.attach(simulator.engine)
        if self.trigger_mode is TriggerMode.PUSH:
            self.triggers.attach(simulator.engine)

    @classmethod
    def from_settings(cls, settings: Settings) -> "MarketServer":
        simulator = MarketSimulator.from_settings(settings)
        store = AccountStore(settings.db_path, default_balance=settings.default_balance)
        return cls(settings, simulator, store)

    # --- websocket messages ---

    def handle_message(self, subscriber: Subscriber, raw: Any) -> None:
        """
        Handle one client frame. Replies are queued on the subscriber.

        Bad frames are answered with an `error` event; they never close the
        connection.
        """
        try:
            message = json.loads(raw) if isinstance(raw, (str, bytes)) else raw
        except ValueError:
            subscriber.send("error", {"message": "Malformed JSON"})
            return
        if not isinstance(message, dict):
            subscriber.send("error", {"message": "Frame must be a JSON object"})
            return

        event = message.get("event")
        handler = self._events.get(event) if isinstance(event, str) else None
        if handler is None:
            subscriber.send("error", {"event": event, "message": f"Unknown event: {event!r}"})
            return

        try:
            handler(self, subscriber, message)
        except PaperMarketError as exc:
            subscriber.send("error", {"event": event, "message": str(exc)})
        except Exception as exc:
            logger.exception(f"Event {event} failed for client {subscriber.id}")
            subscriber.send("error", {"event": event, "message": str(exc)})

    def _symbol_arg(self, message: Mapping[str, Any]) -> str:
        symbol = sanitize_symbol(message.get("symbol"))
        if symbol is None:
            raise ValidationError(f"Invalid symbol: {message.get('symbol')!r}")
        return symbol

    def _on_subscribe(self, subscriber: Subscriber, message: Mapping[str, Any]) -> None:
        self.hub.subscribe(subscriber.id, self._symbol_arg(message))

    def _on_unsubscribe(self, subscriber: Subscriber, message: Mapping[str, Any]) -> None:
        self.hub.unsubscribe(subscriber.id, self._symbol_arg(message))

    def _on_get_chart(self, subscriber: Subscriber, message: Mapping[str, Any]) -> None:
        symbol = self._symbol_arg(message)
        subscriber.send("chartData", self.simulator.get_chart(symbol, message.get("range", "1mo")))

    def _on_search(self, subscriber: Subscriber, message: Mapping[str, Any]) -> None:
        query = sanitize_query(message.get("query"))
        subscriber.send("searchResults", {"query": query, "results": self.simulator.search(query)})

    def _on_get_all_quotes(self, subscriber: Subscriber, message: Mapping[str, Any]) -> None:
        subscriber.send("allQuotes", self.simulator.get_all_quotes())

    def _on_trading(self, subscriber: Subscriber, message: Mapping[str, Any]) -> None:
        status, body = self.api.handle(
            message.get("method", "GET"),
            message.get("path", ""),
            message.get("body"),
            user_id=subscriber.user_id,
        )
        subscriber.send("tradingResponse", {"id": message.get("id"), "status": status, "body": body})

    _events = {
        "subscribe": _on_subscribe,
        "unsubscribe": _on_unsubscribe,
        "getChart": _on_get_chart,
        "search": _on_search,
        "getAllQuotes": _on_get_all_quotes,
        "trading": _on_trading,
    }

    # --- plain HTTP ---

    def health(self) -> Dict[str, Any]:
        return {
            "status": "ok",
            "version": __version__,
            "timestamp": now_ms(),
            "stocks": len(self.simulator.get_symbols()),
            "connections": self.hub.connection_count,
            "uptime": round(time.monotonic() - self.started_at, 1),
            "triggerMode": self.trigger_mode.value,
        }

    def http_get(self, path: str, query: Optional[Mapping[str, str]] = None) -> Optional[HttpResult]:
        """
        Answer a GET under /api.

        Args:
            path: Request path without query string
            query: Single-valued query parameters

        Returns:
            (status, JSON body), or None if the path is not an API route
        """
        query = query or {}
        parts = [unquote(p) for p in path.strip("/").split("/")]
        if not parts or parts[0] != "api":
            return None
        route = parts[1:]

        try:
            if route == ["health"]:
                return 200, self.health()
            if route == ["stocks"]:
                return 200, self.simulator.get_all_quotes()
            if len(route) == 2 and route[0] == "quote":
                return 200, self.simulator.get_quote(self._symbol_arg({"symbol": route[1]}))
            if len(route) == 2 and route[0] == "chart":
                symbol = self._symbol_arg({"symbol": route[1]})
                return 200, self.simulator.get_chart(symbol, query.get("range", "1mo"))
            if len(route) == 2 and route[0] == "search":
                return 200, self.simulator.search(sanitize_query(route[1]))
            if len(route) >= 2 and route[0] == "trading":
                return self.api.handle("GET", "/" + "/".join(route[1:]), user_id=query.get("user"))
        except PaperMarketError as exc:
            return error_status(exc), {"success": False, "error": str(exc)}

        return 404, {"success": False, "error": f"Unknown route {path}"}

    async def process_request(self, connection, request):
        """Serve /api GETs over HTTP; let every other request upgrade to websocket."""
        url = urlsplit(request.path)
        query = {k: v[0] for k, v in parse_qs(url.query).items()}
        result = self.http_get(url.path, query)
        if result is None:
            return None

        status, body = result
        response = connection.respond(HTTPStatus(status), json.dumps(body))
        del response.headers["Content-Type"]
        response.headers["Content-Type"] = "application/json"
        return response

    # --- connections ---

    async def handler(self, connection) -> None:
        """One websocket connection: read frames, write queued pushes."""
        url = urlsplit(connection.request.path)
        user_id = parse_qs(url.query).get("user", [None])[0]
        subscriber = self.hub.connect(user_id=user_id)
        writer = asyncio.create_task(self._writer(connection, subscriber))

        try:
            async for raw in connection:
                self.handle_message(subscriber, raw)
        except ConnectionClosed:
            logger.debug(f"Client {subscriber.id} connection closed")
        finally:
            self.hub.disconnect(subscriber.id)
            writer.cancel()

    async def _writer(self, connection, subscriber: Subscriber) -> None:
        try:
            while True:
                message = await subscriber.next_message()
                if message is None:
                    return
                await connection.send(json.dumps(message))
        except ConnectionClosed:
            logger.debug(f"Client {subscriber.id} closed while sending")

    async def run(self) -> None:
        """Start the tick engine and serve until cancelled."""
        self.simulator.engine.start()
        host, port = self.settings.host, self.settings.port
        try:
            async with serve(self.handler, host, port, process_request=self.process_request) as server:
                logger.info(
                    f"Serving {len(self.simulator.get_symbols())} symbols on ws://{host}:{port} "
                    f"(triggers: {self.trigger_mode.value})"
                )
                await server.serve_forever()
        finally:
            await self.simulator.engine.stop()
            self.store.close()
            logger.info("Server stopped")


async def serve_market(settings: Settings) -> None:
    """Build a MarketServer from settings and run it."""
    await MarketServer.from_settings(settings).run()
