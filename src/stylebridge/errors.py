"""
Exception hierarchy for the inference bridge.

Every failure kind the core can produce has its own class so callers can
tell them apart. None of them is caught and ignored inside the core.
"""

from typing import Any, Dict, Optional


class StyleBridgeError(Exception):
    """Base exception for all stylebridge errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class UnknownStyleError(StyleBridgeError):
    """Raised when a style id is not in the registry."""

    def __init__(self, style_id: str):
        super().__init__(f"Unknown style: {style_id}", {"style_id": style_id})
        self.style_id = style_id


class SessionCreationError(StyleBridgeError):
    """Raised when an inference session cannot be created for a style."""

    def __init__(self, style_id: str, reason: str):
        super().__init__(
            f"Cannot create session for style '{style_id}': {reason}",
            {"style_id": style_id, "reason": reason},
        )
        self.style_id = style_id


class ShapeError(StyleBridgeError):
    """Raised when a buffer does not match its declared shape."""

    def __init__(self, message: str, expected: int, actual: int):
        super().__init__(message, {"expected": expected, "actual": actual})
        self.expected = expected
        self.actual = actual


class InferenceRuntimeError(StyleBridgeError):
    """Raised when the numeric backend fails during a forward pass."""

    def __init__(self, style_id: str, reason: str):
        super().__init__(
            f"Inference failed for style '{style_id}': {reason}",
            {"style_id": style_id, "reason": reason},
        )
        self.style_id = style_id


class BridgeError(StyleBridgeError):
    """
    Raised by the host call bridge when the host side fails.

    ``kind`` tags the host-side failure and ``__cause__`` holds the
    original exception.
    """

    UNKNOWN_STYLE = "unknown_style"
    SESSION_CREATION = "session_creation"
    INFERENCE_RUNTIME = "inference_runtime"
    SHAPE = "shape"
    HOST = "host"

    def __init__(self, kind: str, message: str, call_id: Optional[int] = None):
        super().__init__(message, {"kind": kind, "call_id": call_id})
        self.kind = kind
        self.call_id = call_id

    @classmethod
    def from_host_error(cls, exc: BaseException, call_id: Optional[int] = None) -> "BridgeError":
        """Wrap a host-side exception, tagging it by kind."""
        if isinstance(exc, UnknownStyleError):
            kind = cls.UNKNOWN_STYLE
        elif isinstance(exc, SessionCreationError):
            kind = cls.SESSION_CREATION
        elif isinstance(exc, InferenceRuntimeError):
            kind = cls.INFERENCE_RUNTIME
        elif isinstance(exc, ShapeError):
            kind = cls.SHAPE
        else:
            kind = cls.HOST
        message = getattr(exc, "message", None) or str(exc) or type(exc).__name__
        return cls(kind, message, call_id)
