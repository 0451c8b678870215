"""
Call bridge between the compute side and the host inference runtime.

The compute side (pixel marshalling, running on the caller's event loop)
does not run models itself. It hands each forward pass to a ``HostRuntime``,
which hosts the session cache and invoker on its own event loop thread,
and suspends until the host resolves or rejects the call.
"""

import asyncio
import itertools
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Coroutine, Optional

import numpy as np

from ..errors import BridgeError, ShapeError
from .engine import InferenceInvoker
from .marshal import Tensor
from .sessions import SessionCache, SessionFactory
from .styles import ModelRegistry

logger = logging.getLogger(__name__)


@dataclass
class HostCall:
    """A serialized inference request crossing the bridge."""

    call_id: int
    style_id: str
    buffer: np.ndarray  # float32, flattened NCHW
    shape: tuple[int, int, int, int]


class HostRuntime:
    """
    Hosts the numeric inference engine on a dedicated event loop thread.

    Usage:
        with HostRuntime(registry) as host:
            bridge = InferenceBridge(host)
            out = await bridge.call_host_inference("candy", buf, 1, 3, h, w)
    """

    def __init__(
        self,
        registry: ModelRegistry,
        device: Optional[str] = None,
        workers: int = 2,
        session_factory: Optional[SessionFactory] = None,
    ):
        self.registry = registry
        self.device = device
        self.workers = workers
        self._session_factory = session_factory

        self.sessions: Optional[SessionCache] = None
        self.invoker: Optional[InferenceInvoker] = None

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._ready = threading.Event()
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Start the host loop thread."""
        if self._thread is not None:
            return

        self._executor = ThreadPoolExecutor(
            max_workers=self.workers, thread_name_prefix="stylebridge-host"
        )
        self.sessions = SessionCache(
            self.registry,
            device=self.device,
            executor=self._executor,
            session_factory=self._session_factory,
        )
        self.invoker = InferenceInvoker(self.registry, self.sessions, self._executor)

        self._loop = asyncio.new_event_loop()
        self._ready.clear()
        self._thread = threading.Thread(target=self._run, name="stylebridge-host-loop", daemon=True)
        self._thread.start()
        self._ready.wait()
        self._running = True
        logger.info("Host runtime started (%d workers)", self.workers)

    def _run(self) -> None:
        loop = self._loop
        asyncio.set_event_loop(loop)
        loop.call_soon(self._ready.set)
        try:
            loop.run_forever()
        finally:
            # Cancelling leftover calls resolves their futures on the caller side
            pending = asyncio.all_tasks(loop)
            for task in pending:
                task.cancel()
            if pending:
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()

    def stop(self) -> None:
        """Stop the host loop, failing any calls still in flight."""
        if self._thread is None:
            return

        self._running = False
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join()
        self._executor.shutdown(wait=False, cancel_futures=True)
        self.sessions.close()

        self._thread = None
        self._loop = None
        self._executor = None
        logger.info("Host runtime stopped")

    def submit(self, coro: Coroutine) -> Future:
        """Schedule a coroutine on the host loop from any thread."""
        loop = self._loop
        if not self._running or loop is None:
            coro.close()
            raise BridgeError(BridgeError.HOST, "host runtime is not running")
        try:
            return asyncio.run_coroutine_threadsafe(coro, loop)
        except RuntimeError as e:
            # Loop closed between the running check and scheduling
            coro.close()
            raise BridgeError(BridgeError.HOST, "host runtime is not running") from e

    async def run_model(self, call: HostCall) -> np.ndarray:
        """Host-side entry point: run one forward pass and return a flat buffer."""
        tensor = Tensor(data=call.buffer, shape=call.shape)
        output = await self.invoker.infer(call.style_id, tensor)
        return output.data

    def get_status(self) -> dict:
        """Get host runtime status."""
        status = {"running": self._running, "workers": self.workers}
        if self.invoker is not None:
            status["invoker"] = self.invoker.get_status()
        return status

    def __enter__(self) -> "HostRuntime":
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()


class InferenceBridge:
    """Compute-side handle for calling into a HostRuntime."""

    def __init__(self, host: HostRuntime):
        self.host = host
        self._call_ids = itertools.count(1)
        self._in_flight: dict[int, Future] = {}

    @property
    def in_flight(self) -> int:
        """Number of calls awaiting a host result."""
        return len(self._in_flight)

    def _serialize(
        self, style_id: str, float_buffer, n: int, c: int, h: int, w: int
    ) -> HostCall:
        shape = (int(n), int(c), int(h), int(w))
        buffer = np.array(float_buffer, dtype=np.float32, copy=True).reshape(-1)
        expected = shape[0] * shape[1] * shape[2] * shape[3]
        if buffer.size != expected:
            raise ShapeError(
                f"Buffer has {buffer.size} values, shape {shape} needs {expected}",
                expected=expected,
                actual=buffer.size,
            )
        return HostCall(call_id=next(self._call_ids), style_id=style_id, buffer=buffer, shape=shape)

    async def call_host_inference(
        self, style_id: str, float_buffer, n: int, c: int, h: int, w: int
    ) -> np.ndarray:
        """
        Run a style model on the host and wait for its flat float32 output.

        The buffer must be flattened in (N, C, H, W) order. The result holds
        as many values as the output tensor's shape.

        Raises:
            ShapeError: If the buffer length does not match the shape.
            BridgeError: If the host rejects the call. ``kind`` says why.
        """
        call = self._serialize(style_id, float_buffer, n, c, h, w)

        if not self.host.is_running:
            raise BridgeError(BridgeError.HOST, "host runtime is not running", call.call_id)

        future = None
        try:
            future = self.host.submit(self.host.run_model(call))
            self._in_flight[call.call_id] = future
            return await asyncio.wrap_future(future)
        except asyncio.CancelledError:
            if future is not None and future.cancelled() and not self.host.is_running:
                raise BridgeError(
                    BridgeError.HOST,
                    "host runtime stopped before the call completed",
                    call.call_id,
                ) from None
            raise
        except BridgeError as e:
            if e.call_id is not None:
                raise
            raise BridgeError(e.kind, e.message, call.call_id) from e.__cause__
        except Exception as e:
            raise BridgeError.from_host_error(e, call.call_id) from e
        finally:
            self._in_flight.pop(call.call_id, None)
