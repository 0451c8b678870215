"""Tests for the host runtime and call bridge."""

import asyncio
import inspect
import threading

import numpy as np
import pytest

from stylebridge.errors import BridgeError, ShapeError
from stylebridge.inference.bridge import HostRuntime, InferenceBridge


@pytest.fixture
def host(registry, factory):
    runtime = HostRuntime(registry, device="cpu", workers=2, session_factory=factory)
    runtime.start()
    yield runtime
    runtime.stop()


def _buffer(h=2, w=2):
    return np.linspace(0.0, 255.0, 3 * h * w, dtype=np.float32)


class TestHostRuntime:
    """Tests for HostRuntime lifecycle."""

    def test_start_stop(self, registry, factory):
        runtime = HostRuntime(registry, device="cpu", session_factory=factory)
        assert not runtime.is_running

        with runtime:
            assert runtime.is_running
            assert runtime.get_status()["running"] is True

        assert not runtime.is_running

    @pytest.mark.asyncio
    async def test_model_runs_on_host_thread(self, registry, make_factory):
        seen = []

        def record(x):
            seen.append(threading.current_thread().name)
            return x

        runtime = HostRuntime(registry, device="cpu", session_factory=make_factory(fn=record))
        with runtime:
            await InferenceBridge(runtime).call_host_inference("candy", _buffer(), 1, 3, 2, 2)

        assert seen[0].startswith("stylebridge-host")


class TestInferenceBridge:
    """Tests for InferenceBridge.call_host_inference."""

    @pytest.mark.asyncio
    async def test_round_trip(self, host):
        bridge = InferenceBridge(host)
        buf = _buffer()

        out = await bridge.call_host_inference("candy", buf, 1, 3, 2, 2)

        assert out.dtype == np.float32
        assert out.shape == (12,)
        assert np.array_equal(out, buf)
        assert bridge.in_flight == 0

    @pytest.mark.asyncio
    async def test_request_buffer_is_copied(self, host):
        buf = _buffer()
        out = await InferenceBridge(host).call_host_inference("candy", buf, 1, 3, 2, 2)

        out[0] = -1.0
        assert buf[0] == 0.0

    @pytest.mark.asyncio
    async def test_accepts_plain_sequences(self, host):
        out = await InferenceBridge(host).call_host_inference("mosaic", [1.0, 2.0, 3.0], 1, 3, 1, 1)
        assert out.tolist() == [1.0, 2.0, 3.0]

    @pytest.mark.asyncio
    async def test_shape_mismatch_raises_before_crossing(self, host, factory):
        with pytest.raises(ShapeError):
            await InferenceBridge(host).call_host_inference("candy", _buffer(), 1, 3, 4, 4)
        assert factory.created == []

    @pytest.mark.asyncio
    async def test_unknown_style_tagged(self, host):
        with pytest.raises(BridgeError) as exc_info:
            await InferenceBridge(host).call_host_inference("cubism", _buffer(), 1, 3, 2, 2)

        err = exc_info.value
        assert err.kind == BridgeError.UNKNOWN_STYLE
        assert "cubism" in err.message
        assert err.call_id == 1

    @pytest.mark.asyncio
    async def test_session_creation_tagged(self, registry, make_factory):
        runtime = HostRuntime(
            registry, device="cpu", session_factory=make_factory(error=RuntimeError("no provider"))
        )
        with runtime:
            with pytest.raises(BridgeError) as exc_info:
                await InferenceBridge(runtime).call_host_inference("candy", _buffer(), 1, 3, 2, 2)

        assert exc_info.value.kind == BridgeError.SESSION_CREATION

    @pytest.mark.asyncio
    async def test_inference_runtime_tagged(self, registry, make_factory):
        def explode(x):
            raise ValueError("numeric fault")

        runtime = HostRuntime(registry, device="cpu", session_factory=make_factory(fn=explode))
        with runtime:
            with pytest.raises(BridgeError) as exc_info:
                await InferenceBridge(runtime).call_host_inference("candy", _buffer(), 1, 3, 2, 2)

        assert exc_info.value.kind == BridgeError.INFERENCE_RUNTIME
        assert "numeric fault" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_concurrent_calls_each_resolve_once(self, registry, make_factory):
        factory = make_factory(delay=0.05, fn=lambda x: x * 2.0)
        runtime = HostRuntime(registry, device="cpu", workers=4, session_factory=factory)

        with runtime:
            bridge = InferenceBridge(runtime)
            buffers = [np.full(12, float(i), dtype=np.float32) for i in range(6)]
            outs = await asyncio.gather(
                *(bridge.call_host_inference("udnie", b, 1, 3, 2, 2) for b in buffers)
            )

        assert len(factory.created) == 1
        for i, out in enumerate(outs):
            assert out.tolist() == [2.0 * i] * 12

    @pytest.mark.asyncio
    async def test_call_when_host_not_running(self, registry, factory):
        runtime = HostRuntime(registry, device="cpu", session_factory=factory)

        with pytest.raises(BridgeError) as exc_info:
            await InferenceBridge(runtime).call_host_inference("candy", _buffer(), 1, 3, 2, 2)

        assert exc_info.value.kind == BridgeError.HOST

    @pytest.mark.asyncio
    async def test_pending_call_fails_when_host_stops(self, registry, make_factory):
        release = threading.Event()

        def blocked(x):
            release.wait(5)
            return x

        runtime = HostRuntime(registry, device="cpu", session_factory=make_factory(fn=blocked))
        runtime.start()
        bridge = InferenceBridge(runtime)

        call = asyncio.ensure_future(bridge.call_host_inference("candy", _buffer(), 1, 3, 2, 2))
        while bridge.in_flight == 0:
            await asyncio.sleep(0.01)
        await asyncio.sleep(0.05)

        await asyncio.get_running_loop().run_in_executor(None, runtime.stop)
        release.set()

        with pytest.raises(BridgeError) as exc_info:
            await call
        assert exc_info.value.kind == BridgeError.HOST

    @pytest.mark.asyncio
    async def test_call_racing_shutdown_gets_host_error(self, registry, factory):
        """Test a call that passes the running check after the loop closed."""
        runtime = HostRuntime(registry, device="cpu", session_factory=factory)
        runtime.start()
        loop = runtime._loop
        runtime.stop()

        # State seen by a caller that checked is_running just before stop() finished
        runtime._running = True
        runtime._loop = loop
        try:
            with pytest.raises(BridgeError) as exc_info:
                await InferenceBridge(runtime).call_host_inference("candy", _buffer(), 1, 3, 2, 2)
        finally:
            runtime._running = False
            runtime._loop = None

        assert exc_info.value.kind == BridgeError.HOST
        assert exc_info.value.call_id == 1


class TestHostSubmit:
    """Tests for HostRuntime.submit outside the running state."""

    @staticmethod
    async def _noop():
        return None

    def test_closed_loop_raises_host_error(self, registry, factory):
        runtime = HostRuntime(registry, device="cpu", session_factory=factory)
        runtime.start()
        loop = runtime._loop
        runtime.stop()
        runtime._running = True
        runtime._loop = loop

        coro = self._noop()
        try:
            with pytest.raises(BridgeError) as exc_info:
                runtime.submit(coro)
        finally:
            runtime._running = False
            runtime._loop = None

        assert exc_info.value.kind == BridgeError.HOST
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert inspect.getcoroutinestate(coro) == inspect.CORO_CLOSED

    def test_missing_loop_raises_host_error(self, registry, factory):
        runtime = HostRuntime(registry, device="cpu", session_factory=factory)
        runtime._running = True

        coro = self._noop()
        with pytest.raises(BridgeError) as exc_info:
            runtime.submit(coro)

        assert exc_info.value.kind == BridgeError.HOST
        assert inspect.getcoroutinestate(coro) == inspect.CORO_CLOSED

    def test_stopped_runtime_raises_host_error(self, registry, factory):
        runtime = HostRuntime(registry, device="cpu", session_factory=factory)

        coro = self._noop()
        with pytest.raises(BridgeError):
            runtime.submit(coro)

        assert inspect.getcoroutinestate(coro) == inspect.CORO_CLOSED
