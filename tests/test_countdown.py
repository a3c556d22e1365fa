"""
Tests for the success-page countdown

The timer always runs to zero before a PIN is shown, whichever source
delivers first. Polling only updates the cached code.
"""

import asyncio
import json
import pytest
import httpx

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))


def _run_ticks(state, ticks):
    for _ in range(ticks):
        state.tick()


class TestCountdownState:

    def test_backup_code_shown_only_at_zero(self):
        """Backup PIN arriving at tick 2 is not displayed until tick 20"""
        from app.client.countdown import CountdownState, CountdownPhase

        state = CountdownState(countdown=20)
        _run_ticks(state, 2)
        state.on_poll(200, {"status": "active", "code": None, "backupCode": "4821"})

        _run_ticks(state, 17)
        assert state.phase == CountdownPhase.COUNTING
        assert state.countdown == 1
        assert state.displayed_code is None
        assert state.cached_code == "4821"

        state.tick()
        assert state.phase == CountdownPhase.DISPLAYED
        assert state.displayed_code == "4821"
        assert state.pin_source == "backup"

    def test_rooms_pin_wins_over_backup(self):
        from app.client.countdown import CountdownState

        state = CountdownState(countdown=3)
        state.on_poll(200, {"code": None, "backupCode": "4821"})
        state.on_poll(200, {"code": "777999", "backupCode": "4821"})
        state.on_poll(200, {"code": None, "backupCode": "1111"})
        _run_ticks(state, 3)

        assert state.displayed_code == "777999"
        assert state.pin_source == "rooms"

    def test_no_code_at_zero(self):
        from app.client.countdown import CountdownState, CountdownPhase

        state = CountdownState(countdown=2)
        state.on_poll(400, {"status": "pending", "paymentStatus": "processing"})
        _run_ticks(state, 2)

        assert state.phase == CountdownPhase.NO_CODE
        assert state.displayed_code is None

    def test_pending_payment_backup_is_cached(self):
        """A 400 for a paid but unreconciled pass still carries the backup PIN"""
        from app.client.countdown import CountdownState

        state = CountdownState(countdown=1)
        state.on_poll(400, {"status": "pending", "paymentStatus": "succeeded", "backupCode": "4821"})
        state.tick()

        assert state.displayed_code == "4821"

    def test_sync_fires_once(self):
        from app.client.countdown import CountdownState

        state = CountdownState(countdown=20)

        assert state.on_poll(400, {"status": "pending"}) is True
        assert state.on_poll(400, {"status": "pending"}) is False
        assert state.on_poll(400, {"paymentStatus": "pending"}) is False
        assert state.sync_attempted is True

    def test_sync_not_spent_without_intent(self):
        """A poller that cannot sync keeps its single attempt"""
        from app.client.countdown import CountdownState

        state = CountdownState(countdown=20)

        assert state.on_poll(400, {"status": "pending"}, can_sync=False) is False
        assert state.sync_attempted is False
        assert state.on_poll(400, {"status": "pending"}, can_sync=True) is True

    def test_not_found_does_not_sync(self):
        from app.client.countdown import CountdownState

        state = CountdownState(countdown=20)
        assert state.on_poll(404, {"error": "Pass not found"}) is False
        assert state.on_poll(500, None) is False

    def test_terminal_state_ignores_updates(self):
        from app.client.countdown import CountdownState

        state = CountdownState(countdown=1)
        state.on_poll(200, {"backupCode": "4821"})
        state.tick()
        state.on_poll(200, {"code": "777999"})
        state.tick()

        assert state.displayed_code == "4821"
        assert state.countdown == 0

    def test_default_countdown_from_settings(self):
        from app.client.countdown import CountdownState
        from app.config import settings

        assert CountdownState().countdown == settings.pass_countdown_seconds


class TestPassStatusPoller:

    def test_requires_identifier(self):
        from app.client.countdown import PassStatusPoller

        with pytest.raises(ValueError):
            PassStatusPoller("http://api.test")

    def test_run_syncs_then_shows_backup(self):
        """Pending payment triggers one sync; the backup PIN is shown at zero"""
        from app.client.countdown import PassStatusPoller, CountdownPhase

        calls = {"status": 0, "sync": []}

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/api/passes/sync-payment":
                calls["sync"].append(json.loads(request.content))
                return httpx.Response(200, json={"success": True})
            calls["status"] += 1
            assert request.url.params["payment_intent"] == "pi_123"
            if calls["status"] == 1:
                return httpx.Response(400, json={"status": "pending", "paymentStatus": "pending"})
            return httpx.Response(200, json={"status": "active", "code": None, "backupCode": "4821"})

        poller = PassStatusPoller(
            "http://api.test",
            payment_intent="pi_123",
            countdown_seconds=5,
            poll_interval=0.01,
            tick_interval=0.02,
            transport=httpx.MockTransport(handler)
        )
        state = asyncio.run(poller.run())

        assert state.phase == CountdownPhase.DISPLAYED
        assert state.displayed_code == "4821"
        assert state.pin_source == "backup"
        assert calls["sync"] == [{"paymentIntentId": "pi_123"}]
        assert calls["status"] >= 2

    def test_run_survives_network_errors(self):
        from app.client.countdown import PassStatusPoller, CountdownPhase

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("offline", request=request)

        poller = PassStatusPoller(
            "http://api.test",
            session_id="cs_123",
            countdown_seconds=3,
            poll_interval=0.01,
            tick_interval=0.01,
            transport=httpx.MockTransport(handler)
        )
        state = asyncio.run(poller.run())

        assert state.phase == CountdownPhase.NO_CODE

    def test_session_only_poller_never_posts_sync(self):
        """Without a payment intent there is nothing to sync"""
        from app.client.countdown import PassStatusPoller

        paths = []

        def handler(request: httpx.Request) -> httpx.Response:
            paths.append(request.url.path)
            return httpx.Response(400, json={"status": "pending", "paymentStatus": "pending"})

        poller = PassStatusPoller(
            "http://api.test",
            session_id="cs_123",
            countdown_seconds=3,
            poll_interval=0.01,
            tick_interval=0.01,
            transport=httpx.MockTransport(handler)
        )
        state = asyncio.run(poller.run())

        assert "/api/passes/sync-payment" not in paths
        assert state.sync_attempted is False

    def test_session_poller_with_intent_syncs(self):
        """Polling by session still syncs once the intent id is known"""
        from app.client.countdown import PassStatusPoller

        syncs = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/api/passes/sync-payment":
                syncs.append(json.loads(request.content))
                return httpx.Response(200, json={"success": True})
            assert request.url.params["session_id"] == "cs_123"
            return httpx.Response(400, json={"status": "pending", "paymentStatus": "pending"})

        poller = PassStatusPoller(
            "http://api.test",
            session_id="cs_123",
            payment_intent="pi_123",
            countdown_seconds=3,
            poll_interval=0.01,
            tick_interval=0.01,
            transport=httpx.MockTransport(handler)
        )
        asyncio.run(poller.run())

        assert syncs == [{"paymentIntentId": "pi_123"}]
