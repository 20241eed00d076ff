"""
Browser relay adapters.

One RelayConnection per browser WebSocket. It exposes the engine's ports
(speech session, storefront, profile store, action log) over the relay
protocol in `session_protocol`, and dispatches inbound relay messages to the
engine and its session supervisor.

Outbound messages go through a queue drained by a single sender task, so
synchronous callers (storefront commands, profile/action listeners) never
block on the socket.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional

import structlog

from src.shopvoice.config import get_config
from src.shopvoice.echo import TranscriptEvent
from src.shopvoice.engine import VoiceCommandEngine
from src.shopvoice.oracle import Oracle
from src.shopvoice.profile import InMemoryProfileStore, UserProfile
from src.shopvoice.router import ActionLog, ActionLogEntry
from src.shopvoice.session import ConnectionState, TranscriptConsumer
from src.shopvoice.session_protocol import (
    PageState,
    SessionEventType,
    create_action_message,
    create_connection_message,
    create_profile_message,
    create_say_message,
    create_start_message,
    create_stop_message,
    create_ui_message,
    parse_session_message,
)
from src.shopvoice.storefront import CartItem, PriceRange, Product

logger = structlog.get_logger(__name__)

Send = Callable[[str], None]


class RelaySpeechSession:
    """Speech session whose provider SDK runs in the browser."""

    def __init__(self, send: Send):
        self._send = send
        self._consumer: Optional[TranscriptConsumer] = None

    @property
    def subscribed(self) -> bool:
        return self._consumer is not None

    async def start(self, session_id: str) -> None:
        self._send(create_start_message(session_id))

    async def stop(self) -> None:
        self._send(create_stop_message())

    async def send_system_utterance(self, text: str) -> None:
        self._send(create_say_message(text))

    def subscribe(self, consumer: TranscriptConsumer) -> None:
        self._consumer = consumer

    def unsubscribe(self) -> None:
        self._consumer = None

    async def deliver(self, event: TranscriptEvent) -> None:
        if self._consumer is None:
            logger.debug("Transcript dropped, no subscriber")
            return
        await self._consumer(event)


class RelayStorefront:
    """
    Storefront backed by the browser.

    Reads come from the last page_state snapshot; writes are sent as ui
    commands and mirrored locally so follow-up commands in the same turn see
    them.
    """

    def __init__(self, send: Send, *, locale: Optional[str] = None):
        self._send = send
        self.state = PageState(locale=locale)

    def update_state(self, state: PageState) -> None:
        if state.locale is None:
            state.locale = self.state.locale
        self.state = state

    def _ui(self, command: str, **args: Any) -> None:
        self._send(create_ui_message(command, **args))

    def go_back(self) -> None:
        self._ui("back")

    def navigate(self, path: str) -> None:
        self.state.path = path
        self._ui("navigate", path=path)

    def set_locale(self, locale: str) -> None:
        self.state.locale = locale
        self._ui("locale", locale=locale)

    def current_product(self) -> Optional[Product]:
        return self.state.product

    def products(self) -> List[Product]:
        return list(self.state.products)

    def cart_items(self) -> List[CartItem]:
        return list(self.state.cart)

    def add_to_cart(self, product: Product, size: str, quantity: int) -> None:
        for item in self.state.cart:
            if item.id == product.id and item.size == size:
                item.quantity += quantity
                break
        else:
            self.state.cart.append(CartItem(id=product.id, name=product.name, quantity=quantity, size=size))
        self._ui("add_to_cart", product_id=product.id, size=size, quantity=quantity)

    def remove_from_cart(self, item_id: str) -> None:
        self.state.cart = [item for item in self.state.cart if item.id != item_id]
        self._ui("remove_from_cart", item_id=item_id)

    def update_cart_quantity(self, item_id: str, quantity: int) -> None:
        for item in self.state.cart:
            if item.id == item_id:
                item.quantity = quantity
        self._ui("update_cart_quantity", item_id=item_id, quantity=quantity)

    def selected_size(self) -> Optional[str]:
        return self.state.selected_size

    def select_size(self, size: str) -> None:
        self.state.selected_size = size
        self._ui("select_size", size=size)

    def set_quantity(self, quantity: int) -> None:
        self.state.quantity = quantity
        self._ui("set_quantity", quantity=quantity)

    def filter_options(self) -> Dict[str, List[str]]:
        return dict(self.state.filter_options)

    def apply_filters(self, filters: Dict[str, List[str]], price: Optional[PriceRange] = None) -> None:
        self._ui("apply_filters", filters=filters, price=list(price) if price else None)

    def remove_filters(self, filters: Dict[str, List[str]], price: bool = False) -> None:
        self._ui("remove_filters", filters=filters, price=price)

    def clear_filters(self) -> None:
        self._ui("clear_filters")


class RelayConnection:
    """Everything attached to one browser WebSocket."""

    def __init__(
        self,
        send_text: Callable[[str], Awaitable[None]],
        *,
        oracle: Optional[Oracle] = None,
        config: Optional[Any] = None,
    ):
        if config is None:
            config = get_config()

        self._send_text = send_text
        self._outbound: asyncio.Queue = asyncio.Queue()
        self._sender_task: Optional[asyncio.Task] = None

        self.session = RelaySpeechSession(self.enqueue)
        self.storefront = RelayStorefront(self.enqueue, locale=config.default_locale)
        self.profile_store = InMemoryProfileStore(on_change=self._on_profile_change)
        self.action_log = ActionLog(maxlen=config.action_log_size, on_entry=self._on_action)
        self.engine = VoiceCommandEngine(
            self.session,
            self.storefront,
            oracle=oracle,
            profile_store=self.profile_store,
            action_log=self.action_log,
            on_order_confirmed=self._submit_order,
            on_connection_state=self._on_connection_state,
            config=config,
        )

    def enqueue(self, message: str) -> None:
        self._outbound.put_nowait(message)

    async def start(self) -> None:
        if self._sender_task is None or self._sender_task.done():
            self._sender_task = asyncio.create_task(self._sender())
        await self.engine.start()

    async def stop(self) -> None:
        await self.engine.stop()

        task = self._sender_task
        self._sender_task = None
        if task and not task.done():
            try:
                await asyncio.wait_for(self._outbound.join(), timeout=1.0)
            except asyncio.TimeoutError:
                logger.warning("Outbound queue not drained", pending=self._outbound.qsize())
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    async def handle_message(self, raw_message: str) -> None:
        """
        Dispatch one inbound relay message.

        Raises:
            ValueError: If the message cannot be parsed
        """
        event_type, payload = parse_session_message(raw_message)
        supervisor = self.engine.supervisor

        if event_type == SessionEventType.SESSION_STARTED:
            supervisor.on_session_started()
        elif event_type == SessionEventType.SESSION_ENDED:
            supervisor.on_session_ended()
        elif event_type == SessionEventType.SPEECH_STARTED:
            self.engine.on_speech_started()
        elif event_type == SessionEventType.SPEECH_ENDED:
            self.engine.on_speech_ended()
        elif event_type == SessionEventType.ERROR:
            supervisor.on_error(payload.kind, payload.message)
        elif event_type == SessionEventType.TRANSCRIPT:
            await self.session.deliver(payload)
        elif event_type == SessionEventType.PAGE_STATE:
            self.storefront.update_state(payload)

    async def _submit_order(self, collected: Dict[str, str]) -> None:
        # Payment/order submission is owned by the storefront.
        self.storefront.navigate("/confirmation")
        self.enqueue(create_ui_message("submit_order", details=collected))

    def _on_profile_change(self, profile: UserProfile, changed: Dict[str, Any]) -> None:
        self.enqueue(create_profile_message(changed))

    def _on_action(self, entry: ActionLogEntry) -> None:
        self.enqueue(create_action_message(entry.to_dict()))

    def _on_connection_state(self, state: ConnectionState) -> None:
        self.enqueue(create_connection_message(state.value))

    async def _sender(self) -> None:
        try:
            while True:
                message = await self._outbound.get()
                try:
                    await self._send_text(message)
                except Exception as e:
                    logger.error("Failed to send relay message", error=str(e))
                finally:
                    self._outbound.task_done()
        except asyncio.CancelledError:
            pass
