"""
投递句柄测试
"""

import asyncio

from evm_chain_monitor.managers.delivery_handles import HeaderSubscription, Ticker
from evm_chain_monitor.tests.fakes import FakeRPC


class TestTicker:

    async def test_ticks_until_cancelled(self):
        ticks = []

        async def tick():
            ticks.append(len(ticks))

        ticker = Ticker(0.01, tick, name='test-ticker')
        ticker.start()
        while len(ticks) < 3:
            await asyncio.sleep(0.01)

        ticker.cancel()
        await ticker.wait_closed()
        count = len(ticks)
        await asyncio.sleep(0.05)

        assert not ticker.is_active
        assert len(ticks) == count

    async def test_in_flight_tick_completes_after_cancel(self):
        started = asyncio.Event()
        finished = []

        async def slow_tick():
            started.set()
            await asyncio.sleep(0.05)
            finished.append(True)

        ticker = Ticker(0.0, slow_tick)
        ticker.start()
        await started.wait()

        ticker.cancel()
        await ticker.wait_closed()

        assert finished == [True]

    async def test_callback_errors_do_not_stop_ticker(self):
        calls = []

        async def failing_tick():
            calls.append(1)
            raise RuntimeError('tick failed')

        ticker = Ticker(0.0, failing_tick)
        ticker.start()
        while len(calls) < 2:
            await asyncio.sleep(0.01)
        ticker.cancel()
        await ticker.wait_closed()

        assert len(calls) >= 2


class TestHeaderSubscription:

    async def test_headers_are_processed_in_order(self):
        rpc = FakeRPC(rpc_url='ws://node')
        seen = []

        async def on_header(header):
            seen.append(header['number'])

        subscription = HeaderSubscription(rpc, on_header, on_error=lambda e: None)
        await subscription.start()
        for number in (1, 2, 3):
            rpc.heads.put_nowait({'number': number})
        while len(seen) < 3:
            await asyncio.sleep(0.01)

        await subscription.cancel()
        await subscription.wait_closed()

        assert seen == [1, 2, 3]
        assert rpc.unsubscribes == 1
        assert not subscription.is_active

    async def test_stream_error_is_reported(self):
        rpc = FakeRPC(rpc_url='ws://node')
        errors = []

        async def on_header(header):
            pass

        subscription = HeaderSubscription(rpc, on_header, on_error=errors.append)
        await subscription.start()
        rpc.heads.put_nowait(ConnectionResetError('socket hang up'))
        while not errors:
            await asyncio.sleep(0.01)

        assert isinstance(errors[0], ConnectionResetError)
        await subscription.cancel()

    async def test_cancel_does_not_report_error(self):
        rpc = FakeRPC(rpc_url='ws://node')
        errors = []

        async def on_header(header):
            pass

        subscription = HeaderSubscription(rpc, on_header, on_error=errors.append)
        await subscription.start()
        await subscription.cancel()
        await subscription.wait_closed()

        assert errors == []
