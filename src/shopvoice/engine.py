"""
Voice command engine.

Composition root for one shopper conversation:

    speech session -> transcript -> echo suppressor
        -> guided checkout (while a checkout dialogue is active)
        -> intent classifier + command router (otherwise)

Final transcripts are queued and processed by a single turn worker, so a
command (including its oracle calls) always runs to completion before the next
transcript is looked at. Session supervision runs independently of the turn
worker.
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

import structlog

from src.shopvoice.checkout import CheckoutFlow
from src.shopvoice.config import get_config
from src.shopvoice.echo import EchoContext, SpokenPromptRecord, TranscriptEvent, should_accept
from src.shopvoice.handlers import build_handlers
from src.shopvoice.intents import Intent, IntentClassifier
from src.shopvoice.oracle import Oracle, get_oracle
from src.shopvoice.profile import InMemoryProfileStore, ProfileStore
from src.shopvoice.router import ActionLog, CommandHandler, CommandRouter
from src.shopvoice.session import ConnectionState, SessionSupervisor, SpeechSession
from src.shopvoice.storefront import Storefront
from src.shopvoice.text import redact_transcript_for_logs

logger = structlog.get_logger(__name__)

OrderSubmitter = Callable[[Dict[str, str]], Awaitable[None]]


class VoiceCommandEngine:
    """
    Drives one conversation.

    Args:
        session: Speech session transport
        storefront: Storefront port used by command handlers
        oracle: Classification/extraction oracle (defaults to the shared client)
        profile_store: Where collected profile fields are written
        on_order_confirmed: Called with the collected checkout fields once the
            shopper confirms the order
        handlers: Override the default handler table (mainly for tests)
    """

    def __init__(
        self,
        session: SpeechSession,
        storefront: Storefront,
        *,
        oracle: Optional[Oracle] = None,
        profile_store: Optional[ProfileStore] = None,
        on_order_confirmed: Optional[OrderSubmitter] = None,
        on_connection_state: Optional[Callable[[ConnectionState], None]] = None,
        action_log: Optional[ActionLog] = None,
        handlers: Optional[Mapping[Intent, CommandHandler]] = None,
        config: Optional[Any] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if config is None:
            config = get_config()
        if oracle is None:
            oracle = get_oracle()

        self.config = config
        self._clock = clock
        self._session = session
        self._on_order_confirmed = on_order_confirmed

        self.profile_store = profile_store or InMemoryProfileStore()
        self.action_log = action_log or ActionLog(maxlen=config.action_log_size)
        self.checkout = CheckoutFlow(self.profile_store, grace_ms=config.checkout_grace_ms, clock=clock)

        if handlers is None:
            handlers = build_handlers(
                oracle,
                storefront,
                self.profile_store,
                self.action_log,
                on_checkout=self.begin_checkout,
                speak=self.speak,
                config=config,
            )
        self.router = CommandRouter(
            IntentClassifier(oracle, config),
            handlers,
            self.action_log,
            navigate=storefront.navigate,
        )
        self.supervisor = SessionSupervisor(
            session,
            self._on_transcript,
            config=config,
            on_state_change=on_connection_state,
        )

        # System speech tracking for echo suppression
        self._system_speaking = False
        self._last_speech_end: Optional[float] = None
        self._last_spoken: Optional[SpokenPromptRecord] = None

        self._turn_queue: asyncio.Queue = asyncio.Queue()
        self._turn_worker_task: Optional[asyncio.Task] = None
        self._is_running = False

    @property
    def last_spoken(self) -> Optional[SpokenPromptRecord]:
        return self._last_spoken

    @property
    def system_speaking(self) -> bool:
        return self._system_speaking

    async def start(self) -> None:
        """Start the turn worker and connect the speech session."""
        logger.info("Starting voice command engine")
        self._is_running = True
        if self._turn_worker_task is None or self._turn_worker_task.done():
            self._turn_worker_task = asyncio.create_task(self._turn_worker())
        await self.supervisor.start()

    async def stop(self) -> None:
        logger.info("Stopping voice command engine")
        self._is_running = False
        self.checkout.stop_flow()
        await self.supervisor.stop()

        task = self._turn_worker_task
        self._turn_worker_task = None
        if task and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        dropped = 0
        while True:
            try:
                self._turn_queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            self._turn_queue.task_done()
            dropped += 1
        if dropped:
            logger.debug("Dropped queued transcripts on stop", count=dropped)

    async def drain(self) -> None:
        """Wait until every queued transcript has been processed."""
        await self._turn_queue.join()

    # --- speech session events ---

    def on_speech_started(self) -> None:
        self._system_speaking = True

    def on_speech_ended(self) -> None:
        self._system_speaking = False
        self._last_speech_end = self._clock()

    async def _on_transcript(self, event: TranscriptEvent) -> None:
        if not event.is_final:
            return
        await self._turn_queue.put(event)

    # --- output ---

    async def speak(self, text: str) -> None:
        """Send a system utterance and remember it for echo comparison."""
        if not text:
            return
        now = self._clock()
        self._last_spoken = SpokenPromptRecord(text=text, timestamp=now)
        # Provisional end time until the session reports speech_ended.
        if self._last_speech_end is None or self._last_speech_end < now:
            self._last_speech_end = now
        try:
            await self._session.send_system_utterance(text)
        except Exception as e:
            logger.error("Failed to send system utterance", error=str(e))

    async def begin_checkout(self) -> None:
        await self.speak(self.checkout.start_flow())

    # --- turn processing ---

    def _echo_context(self) -> EchoContext:
        window = (
            self.config.echo_checkout_window_ms
            if self.checkout.is_active
            else self.config.echo_command_window_ms
        )
        return EchoContext(
            now=self._clock(),
            window_ms=window,
            system_speaking=self._system_speaking,
            last_speech_end=self._last_speech_end,
            last_spoken=self._last_spoken.text if self._last_spoken else "",
        )

    async def process_transcript(self, event: TranscriptEvent) -> None:
        """Run one turn for a final transcript."""
        text = (event.text or "").strip()
        decision = should_accept(text, self._echo_context())
        if not decision.accept:
            logger.debug("Transcript suppressed", reason=decision.reason)
            return

        logger.info(
            "Transcript accepted",
            text=redact_transcript_for_logs(text),
            checkout_step=self.checkout.step.value,
        )

        if self.checkout.is_active:
            await self._process_checkout_answer(text)
            return

        await self.router.route(text)

    async def _process_checkout_answer(self, text: str) -> None:
        result = self.checkout.process_answer(text)
        if result.reason == "cancelled":
            self.action_log.add("Checkout cancelled")

        if result.next_prompt:
            await self.speak(result.next_prompt)

        if not result.should_finalize:
            return

        collected = self.checkout.collected
        self.action_log.add("Order confirmed")
        if self._on_order_confirmed is None:
            return
        try:
            await self._on_order_confirmed(collected)
        except Exception as e:
            logger.error("Order submission failed", error=str(e))
            self.action_log.add("Order submission failed", success=False)

    async def _turn_worker(self) -> None:
        """Background worker that processes queued final transcripts sequentially."""
        try:
            while self._is_running:
                try:
                    event = await asyncio.wait_for(self._turn_queue.get(), timeout=1.0)
                except asyncio.TimeoutError:
                    continue

                try:
                    await self.process_transcript(event)
                except Exception as e:
                    logger.error("Turn failed", error=str(e))
                finally:
                    self._turn_queue.task_done()
        except asyncio.CancelledError:
            pass
