"""
Success-page PIN countdown

After checkout the purchaser waits a fixed number of seconds while two PIN
sources race: the Rooms reservation PIN (arrives via the webhook) and the
backup fortnight PIN (known as soon as the payment succeeds). Polling only
caches codes; the cached code is revealed when the countdown hits zero.

CountdownState is the pure state machine, PassStatusPoller drives it
against the HTTP API with httpx.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Dict, Any

import httpx

from ..config import settings

logger = logging.getLogger(__name__)


class CountdownPhase(str, Enum):
    COUNTING = "counting"
    DISPLAYED = "displayed"
    NO_CODE = "no_code"


@dataclass
class CountdownState:
    countdown: int = field(default_factory=lambda: settings.pass_countdown_seconds)
    rooms_pin_received: bool = False
    cached_code: Optional[str] = None
    displayed_code: Optional[str] = None
    pin_source: Optional[str] = None
    phase: CountdownPhase = CountdownPhase.COUNTING
    sync_attempted: bool = False
    pass_details: Optional[Dict[str, Any]] = None

    @property
    def is_terminal(self) -> bool:
        return self.phase != CountdownPhase.COUNTING

    def on_poll(self, status_code: int, body: Optional[Dict[str, Any]], can_sync: bool = True) -> bool:
        """
        Record a status response. Returns True when the one-shot payment
        sync should be fired now. The attempt is only spent when can_sync
        (a payment intent id is known).
        """
        if self.is_terminal or not isinstance(body, dict):
            return False

        if status_code == 200:
            self.pass_details = body
            code = body.get("code")
            if code:
                self.cached_code = code
                self.rooms_pin_received = True
            elif body.get("backupCode") and not self.rooms_pin_received:
                self.cached_code = body["backupCode"]
            return False

        if body.get("backupCode") and not self.rooms_pin_received:
            self.cached_code = body["backupCode"]

        pending = body.get("status") == "pending" or body.get("paymentStatus") == "pending"
        if pending and can_sync and not self.sync_attempted:
            self.sync_attempted = True
            return True
        return False

    def tick(self) -> CountdownPhase:
        """Advance the timer by one second."""
        if self.is_terminal:
            return self.phase

        self.countdown = max(self.countdown - 1, 0)
        if self.countdown > 0:
            return self.phase

        if self.cached_code:
            self.displayed_code = self.cached_code
            self.pin_source = "rooms" if self.rooms_pin_received else "backup"
            self.phase = CountdownPhase.DISPLAYED
        else:
            self.phase = CountdownPhase.NO_CODE
        return self.phase


class PassStatusPoller:
    """
    Polls /api/passes/by-session alongside a one-second timer.

    The poll loop never touches the timer; run() returns once the countdown
    reaches a terminal phase, and cancel() stops both tasks.
    """

    def __init__(
        self,
        base_url: str,
        session_id: Optional[str] = None,
        payment_intent: Optional[str] = None,
        countdown_seconds: Optional[int] = None,
        poll_interval: float = 3.0,
        tick_interval: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        if not session_id and not payment_intent:
            raise ValueError("session_id or payment_intent is required")

        self.base_url = base_url.rstrip("/")
        self.session_id = session_id
        self.payment_intent = payment_intent
        self.poll_interval = poll_interval
        self.tick_interval = tick_interval
        self.transport = transport
        self.state = CountdownState(
            countdown=countdown_seconds if countdown_seconds is not None else settings.pass_countdown_seconds
        )
        self._tasks = []

    def _query(self) -> Dict[str, str]:
        if self.session_id:
            return {"session_id": self.session_id}
        return {"payment_intent": self.payment_intent}

    async def _sync_payment(self, client: httpx.AsyncClient) -> None:
        if not self.payment_intent:
            return
        try:
            response = await client.post(
                "/api/passes/sync-payment",
                json={"paymentIntentId": self.payment_intent}
            )
            logger.info(f"Payment sync for {self.payment_intent} returned {response.status_code}")
        except httpx.HTTPError as e:
            logger.warning(f"Payment sync for {self.payment_intent} failed: {e}")

    async def poll_once(self, client: httpx.AsyncClient) -> None:
        try:
            response = await client.get("/api/passes/by-session", params=self._query())
        except httpx.HTTPError as e:
            logger.warning(f"Pass status poll failed: {e}")
            return

        try:
            body = response.json()
        except ValueError:
            body = None

        if self.state.on_poll(response.status_code, body, can_sync=bool(self.payment_intent)):
            await self._sync_payment(client)

    async def _poll_loop(self, client: httpx.AsyncClient) -> None:
        while not self.state.is_terminal:
            await self.poll_once(client)
            await asyncio.sleep(self.poll_interval)

    async def _timer_loop(self) -> None:
        while not self.state.is_terminal:
            await asyncio.sleep(self.tick_interval)
            self.state.tick()

    async def run(self) -> CountdownState:
        async with httpx.AsyncClient(base_url=self.base_url, transport=self.transport) as client:
            poll_task = asyncio.create_task(self._poll_loop(client))
            timer_task = asyncio.create_task(self._timer_loop())
            self._tasks = [poll_task, timer_task]
            try:
                await asyncio.gather(timer_task, return_exceptions=True)
            finally:
                self.cancel()
                await asyncio.gather(poll_task, return_exceptions=True)
        return self.state

    def cancel(self) -> None:
        for task in self._tasks:
            if not task.done():
                task.cancel()
