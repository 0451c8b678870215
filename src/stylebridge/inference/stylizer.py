"""Compute-side stylize pipeline."""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .bridge import InferenceBridge
from .marshal import MAX_PIXEL, PixelBuffer, Tensor, blend, decode, encode

logger = logging.getLogger(__name__)


@dataclass
class StyleRequest:
    """Which style to apply, and how strongly."""

    style_id: str
    strength: float = 1.0  # 0 = original, 1 = fully stylized

    def __post_init__(self) -> None:
        if not 0.0 <= self.strength <= 1.0:
            raise ValueError(f"strength must be in [0, 1], got {self.strength}")


@dataclass
class StylizeResult:
    """Result of one stylize call."""

    pixels: PixelBuffer
    style_applied: str
    strength: float
    generation: int
    inference_time_ms: float
    is_current: bool = True  # False if a newer request was issued meanwhile


class Stylizer:
    """
    Turns pixel buffers into stylized pixel buffers.

    Encodes on the caller's loop, delegates the forward pass through the
    bridge, then decodes and blends. Every call gets a generation number;
    a call that finishes after a newer one was issued is marked stale and
    never reaches the completion callback.
    """

    def __init__(self, bridge: InferenceBridge, tensor_range: float = MAX_PIXEL):
        self.bridge = bridge
        self.tensor_range = tensor_range

        self._generation = 0
        self._on_complete: Optional[Callable[[StylizeResult], None]] = None

    @property
    def current_generation(self) -> int:
        return self._generation

    def set_complete_callback(
        self, callback: Optional[Callable[[StylizeResult], None]]
    ) -> None:
        """Set callback for completed, still-current results."""
        self._on_complete = callback

    async def stylize(self, pixels: PixelBuffer, request: StyleRequest) -> StylizeResult:
        """
        Apply a style to an image.

        Args:
            pixels: RGBA input image; not modified
            request: Style id and blend strength

        Returns:
            StylizeResult with an opaque RGBA buffer of the input's size
        """
        self._generation += 1
        generation = self._generation

        tensor = encode(pixels, self.tensor_range)
        n, c, h, w = tensor.shape

        start_time = time.time()
        output = await self.bridge.call_host_inference(request.style_id, tensor.data, n, c, h, w)
        inference_time = (time.time() - start_time) * 1000

        stylized = decode(
            Tensor(data=output, shape=tensor.shape),
            pixels.width,
            pixels.height,
            self.tensor_range,
        )
        if request.strength < 1.0:
            stylized = blend(stylized, pixels, request.strength)

        result = StylizeResult(
            pixels=stylized,
            style_applied=request.style_id,
            strength=request.strength,
            generation=generation,
            inference_time_ms=inference_time,
            is_current=generation == self._generation,
        )

        if not result.is_current:
            logger.info(
                "Discarding stale result (generation %d, current %d)",
                generation, self._generation,
            )
            return result

        if self._on_complete:
            self._on_complete(result)
        return result
