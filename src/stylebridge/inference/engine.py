"""Inference invoker: one forward pass of a style model."""

import asyncio
import logging
import time
from concurrent.futures import Executor
from typing import Optional

import numpy as np

from ..errors import InferenceRuntimeError
from .marshal import Tensor
from .sessions import SessionCache
from .styles import ModelRegistry

logger = logging.getLogger(__name__)


class InferenceInvoker:
    """
    Runs style models on NCHW float32 tensors.

    Resolves the style's session through the cache (creating it on first
    use) and runs the forward pass on the executor so the event loop stays
    responsive.
    """

    def __init__(
        self,
        registry: ModelRegistry,
        sessions: SessionCache,
        executor: Optional[Executor] = None,
    ):
        self.registry = registry
        self.sessions = sessions
        self._executor = executor

        self._total_inferences = 0
        self._last_inference_ms = 0.0

    @property
    def last_inference_ms(self) -> float:
        return self._last_inference_ms

    async def infer(self, style_id: str, tensor: Tensor) -> Tensor:
        """
        Run one forward pass.

        Args:
            style_id: Registered style to apply
            tensor: Input tensor, shape (1, 3, H, W)

        Returns:
            The model's output tensor

        Raises:
            UnknownStyleError: If the style is not registered.
            SessionCreationError: If the style's session cannot be created.
            InferenceRuntimeError: If the backend fails during execution.
        """
        entry = self.registry.lookup(style_id)
        session = await self.sessions.acquire(style_id)

        feeds = {entry.input_tensor_name: tensor.array()}
        output_names = [entry.output_tensor_name]

        loop = asyncio.get_running_loop()
        start_time = time.time()
        try:
            outputs = await loop.run_in_executor(
                self._executor,
                lambda: session.run(output_names, feeds),
            )
        except Exception as e:
            raise InferenceRuntimeError(style_id, str(e) or type(e).__name__) from e

        self._last_inference_ms = (time.time() - start_time) * 1000
        self._total_inferences += 1

        if not outputs:
            raise InferenceRuntimeError(style_id, "model returned no outputs")
        result = np.asarray(outputs[0], dtype=np.float32)
        if result.ndim != 4:
            raise InferenceRuntimeError(
                style_id, f"expected a 4-D output, got shape {result.shape}"
            )

        logger.debug(
            "Inference %s: %s -> %s in %.0fms",
            style_id, tensor.shape, result.shape, self._last_inference_ms,
        )
        return Tensor(data=result.reshape(-1), shape=result.shape)

    def get_status(self) -> dict:
        """Get invoker status."""
        return {
            "total_inferences": self._total_inferences,
            "last_inference_ms": round(self._last_inference_ms, 1),
            "sessions": self.sessions.get_status(),
        }
