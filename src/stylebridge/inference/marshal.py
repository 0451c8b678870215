"""Conversion between RGBA pixel buffers and NCHW float tensors."""

from dataclasses import dataclass

import numpy as np
from PIL import Image

from ..errors import ShapeError

MAX_PIXEL = 255.0


@dataclass
class PixelBuffer:
    """An RGBA image as a flat, interleaved uint8 array."""

    data: np.ndarray  # uint8, length width * height * 4
    width: int
    height: int

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"Invalid image size: {self.width}x{self.height}")
        self.data = np.asarray(self.data, dtype=np.uint8).reshape(-1)

    @classmethod
    def from_image(cls, image: Image.Image) -> "PixelBuffer":
        """Build a buffer from a PIL image (converted to RGBA)."""
        if image.mode != "RGBA":
            image = image.convert("RGBA")
        data = np.asarray(image, dtype=np.uint8).reshape(-1).copy()
        return cls(data=data, width=image.width, height=image.height)

    def to_image(self) -> Image.Image:
        """Convert to a PIL RGBA image."""
        return Image.fromarray(self.data.reshape(self.height, self.width, 4))


@dataclass
class Tensor:
    """A flat float32 buffer tagged with its NCHW shape."""

    data: np.ndarray  # float32, flattened in NCHW order
    shape: tuple[int, int, int, int]

    def __post_init__(self) -> None:
        self.data = np.asarray(self.data, dtype=np.float32).reshape(-1)
        self.shape = tuple(int(d) for d in self.shape)
        expected = int(np.prod(self.shape))
        if self.data.size != expected:
            raise ShapeError(
                f"Tensor has {self.data.size} elements, shape {self.shape} needs {expected}",
                expected=expected,
                actual=self.data.size,
            )

    def array(self) -> np.ndarray:
        """View of the data with its NCHW shape."""
        return self.data.reshape(self.shape)


def encode(pixels: PixelBuffer, tensor_range: float = MAX_PIXEL) -> Tensor:
    """
    Convert an RGBA buffer into a (1, 3, H, W) float32 tensor.

    Alpha is dropped. Channel values are scaled so that 255 maps to
    ``tensor_range``.

    Raises:
        ShapeError: If the buffer length is not width * height * 4.
    """
    w, h = pixels.width, pixels.height
    expected = w * h * 4
    if pixels.data.size != expected:
        raise ShapeError(
            f"Pixel buffer has {pixels.data.size} bytes, {w}x{h} RGBA needs {expected}",
            expected=expected,
            actual=pixels.data.size,
        )

    hwc = pixels.data.reshape(h, w, 4)[:, :, :3]
    chw = hwc.transpose(2, 0, 1).astype(np.float32)
    chw *= np.float32(tensor_range / MAX_PIXEL)
    return Tensor(data=np.ascontiguousarray(chw).reshape(-1), shape=(1, 3, h, w))


def decode(tensor: Tensor, width: int, height: int, tensor_range: float = MAX_PIXEL) -> PixelBuffer:
    """
    Convert a (1, 3, H, W) float tensor back into an opaque RGBA buffer.

    Values outside the valid range are clamped, then rounded to the nearest
    integer before narrowing to uint8.

    Raises:
        ShapeError: If the tensor does not hold 3 * width * height values.
    """
    expected = 3 * width * height
    if tensor.data.size != expected:
        raise ShapeError(
            f"Tensor has {tensor.data.size} elements, {width}x{height} RGB needs {expected}",
            expected=expected,
            actual=tensor.data.size,
        )

    chw = tensor.data.reshape(3, height, width) * np.float32(MAX_PIXEL / tensor_range)
    chw = np.rint(np.clip(chw, 0.0, MAX_PIXEL))

    rgba = np.full((height, width, 4), 255, dtype=np.uint8)
    rgba[:, :, :3] = chw.transpose(1, 2, 0).astype(np.uint8)
    return PixelBuffer(data=rgba.reshape(-1), width=width, height=height)


def blend(stylized: PixelBuffer, original: PixelBuffer, strength: float) -> PixelBuffer:
    """
    Mix a stylized image with the original: strength * stylized + (1 - strength) * original.

    Works per RGB channel; alpha is always 255. Neither input is modified.
    """
    if stylized.data.size != original.data.size:
        raise ShapeError(
            "Cannot blend buffers of different sizes",
            expected=original.data.size,
            actual=stylized.data.size,
        )

    s = np.float32(strength)
    styl = stylized.data.reshape(-1, 4)[:, :3].astype(np.float32)
    orig = original.data.reshape(-1, 4)[:, :3].astype(np.float32)
    # Values are non-negative, so floor(x + 0.5) rounds halves away from zero
    mixed = np.floor(np.clip(s * styl + (np.float32(1.0) - s) * orig, 0.0, MAX_PIXEL) + np.float32(0.5))

    out = np.full((mixed.shape[0], 4), 255, dtype=np.uint8)
    out[:, :3] = mixed.astype(np.uint8)
    return PixelBuffer(data=out.reshape(-1), width=original.width, height=original.height)

