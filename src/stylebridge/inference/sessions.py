"""Inference session management for style models."""

import asyncio
import logging
from concurrent.futures import Executor
from pathlib import Path
from typing import Any, Callable, Optional

import psutil
import torch

from ..errors import SessionCreationError, StyleBridgeError
from .styles import ModelRegistry, StyleEntry

logger = logging.getLogger(__name__)

SessionFactory = Callable[[Path, list[str]], Any]

# Preferred onnxruntime execution providers per compute device
DEVICE_PROVIDERS: dict[str, list[str]] = {
    "cuda": ["CUDAExecutionProvider", "CPUExecutionProvider"],
    "mps": ["CoreMLExecutionProvider", "CPUExecutionProvider"],
    "cpu": ["CPUExecutionProvider"],
}


def detect_device() -> str:
    """Detect best available compute device."""
    if torch.cuda.is_available():
        return "cuda"
    elif torch.backends.mps.is_available():
        return "mps"  # Apple Silicon
    else:
        return "cpu"


def select_providers(device: str, available: list[str]) -> list[str]:
    """Pick the execution providers for a device that onnxruntime actually has."""
    wanted = DEVICE_PROVIDERS.get(device, DEVICE_PROVIDERS["cpu"])
    providers = [p for p in wanted if p in available]
    return providers or ["CPUExecutionProvider"]


def missing_accelerator(device: str, available: list[str]) -> Optional[str]:
    """The accelerator provider a device needs but onnxruntime lacks, if any."""
    for provider in DEVICE_PROVIDERS.get(device, DEVICE_PROVIDERS["cpu"]):
        if provider != "CPUExecutionProvider" and provider not in available:
            return provider
    return None


def create_onnx_session(model_path: Path, providers: list[str]) -> Any:
    """Load a model file into an onnxruntime session."""
    import onnxruntime as ort

    return ort.InferenceSession(str(model_path), providers=providers)


def _available_onnx_providers() -> list[str]:
    import onnxruntime as ort

    return ort.get_available_providers()


class SessionCache:
    """
    Creates and caches one inference session per style.

    Sessions are created lazily on first use and kept until ``close()``.
    Creation runs on the executor, so awaiting ``acquire`` never blocks the
    event loop. Concurrent requests for the same style share one creation.
    """

    def __init__(
        self,
        registry: ModelRegistry,
        device: Optional[str] = None,
        executor: Optional[Executor] = None,
        session_factory: Optional[SessionFactory] = None,
        providers: Optional[list[str]] = None,
        available_providers: Optional[list[str]] = None,
    ):
        self.registry = registry
        explicit = bool(device) and device != "auto"
        self.device = device if explicit else detect_device()
        self._executor = executor
        self._session_factory = session_factory or create_onnx_session

        # An explicitly requested accelerator must exist; only "auto" may fall back to CPU
        self._unavailable_provider: Optional[str] = None
        if providers is None:
            wanted = DEVICE_PROVIDERS.get(self.device, DEVICE_PROVIDERS["cpu"])
            if available_providers is None:
                if session_factory is None:
                    available_providers = _available_onnx_providers()
                else:
                    available_providers = list(wanted)
            if explicit:
                self._unavailable_provider = missing_accelerator(self.device, available_providers)
                if self._unavailable_provider is not None:
                    logger.error(
                        "Device %s requested but %s is unavailable",
                        self.device, self._unavailable_provider,
                    )
            providers = select_providers(self.device, available_providers)
        self.providers = providers

        self._sessions: dict[str, Any] = {}
        self._pending: dict[str, asyncio.Task] = {}
        self._creation_count = 0

        logger.info("Session cache on device %s, providers %s", self.device, self.providers)

    @property
    def creation_count(self) -> int:
        """Number of session creations started so far."""
        return self._creation_count

    def is_loaded(self, style_id: str) -> bool:
        """Check if a session for the style is ready."""
        return style_id in self._sessions

    def get_loaded_styles(self) -> list[str]:
        """Style ids with a ready session."""
        return list(self._sessions.keys())

    async def acquire(self, style_id: str) -> Any:
        """
        Get the session for a style, creating it on first use.

        Raises:
            UnknownStyleError: If the style is not registered.
            SessionCreationError: If the model cannot be loaded.
        """
        session = self._sessions.get(style_id)
        if session is not None:
            return session

        task = self._pending.get(style_id)
        if task is None:
            entry = self.registry.lookup(style_id)
            self._creation_count += 1
            task = asyncio.ensure_future(self._create(entry))
            self._pending[style_id] = task
            task.add_done_callback(lambda t: self._creation_done(style_id, t))

        # Shielded so a cancelled caller does not cancel creation for the others
        return await asyncio.shield(task)

    def _creation_done(self, style_id: str, task: asyncio.Task) -> None:
        self._pending.pop(style_id, None)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Session creation for %s failed: %s", style_id, task.exception())

    async def _create(self, entry: StyleEntry) -> Any:
        """Load the model for a style and register its session."""
        if self._unavailable_provider is not None:
            raise SessionCreationError(entry.id, f"{self._unavailable_provider} unavailable")

        model_path = self.registry.resolve_path(entry)
        if not model_path.is_file():
            raise SessionCreationError(entry.id, f"model file not found: {model_path}")

        logger.info("Creating session for %s from %s", entry.id, model_path)
        loop = asyncio.get_running_loop()
        try:
            session = await loop.run_in_executor(
                self._executor,
                self._session_factory,
                model_path,
                self.providers,
            )
        except StyleBridgeError:
            raise
        except Exception as e:
            raise SessionCreationError(entry.id, str(e) or type(e).__name__) from e

        try:
            input_name = session.get_inputs()[0].name
            output_name = session.get_outputs()[0].name
        except (AttributeError, IndexError) as e:
            raise SessionCreationError(entry.id, "model declares no inputs or outputs") from e

        entry.discover_io(input_name, output_name)
        self._sessions[entry.id] = session

        logger.info(
            "Session ready for %s (input=%s, output=%s)",
            entry.id, entry.input_tensor_name, entry.output_tensor_name,
        )
        return session

    def close(self) -> None:
        """Drop all sessions."""
        for task in self._pending.values():
            task.cancel()
        self._pending.clear()
        self._sessions.clear()

    def get_status(self) -> dict:
        """Get session cache status."""
        rss_mb = psutil.Process().memory_info().rss / (1024 * 1024)
        return {
            "device": self.device,
            "providers": list(self.providers),
            "loaded_styles": self.get_loaded_styles(),
            "pending_styles": list(self._pending.keys()),
            "sessions_created": self._creation_count,
            "process_memory_mb": round(rss_mb, 1),
        }
