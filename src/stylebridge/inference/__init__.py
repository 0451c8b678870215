"""Style-transfer inference bridge."""

from .bridge import HostCall, HostRuntime, InferenceBridge
from .engine import InferenceInvoker
from .marshal import PixelBuffer, Tensor, blend, decode, encode
from .sessions import SessionCache
from .styles import STYLE_MODELS, ModelRegistry, StyleEntry
from .stylizer import StyleRequest, StylizeResult, Stylizer

__all__ = [
    "HostCall",
    "HostRuntime",
    "InferenceBridge",
    "InferenceInvoker",
    "PixelBuffer",
    "Tensor",
    "blend",
    "decode",
    "encode",
    "SessionCache",
    "STYLE_MODELS",
    "ModelRegistry",
    "StyleEntry",
    "StyleRequest",
    "StylizeResult",
    "Stylizer",
]
