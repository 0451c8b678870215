"""Shared fixtures: fake inference backends and a populated models directory."""

import threading
import time
from pathlib import Path
from types import SimpleNamespace

import numpy as np
import pytest

from stylebridge.inference.styles import STYLE_MODELS, ModelRegistry


class FakeSession:
    """Stands in for an onnxruntime.InferenceSession."""

    def __init__(self, model_path, input_name="input1", output_name="output1", fn=None):
        self.model_path = Path(model_path)
        self.input_name = input_name
        self.output_name = output_name
        self.fn = fn or (lambda x: x)
        self.calls = 0

    def get_inputs(self):
        return [SimpleNamespace(name=self.input_name)]

    def get_outputs(self):
        return [SimpleNamespace(name=self.output_name)]

    def run(self, output_names, feeds):
        self.calls += 1
        assert output_names == [self.output_name]
        return [self.fn(feeds[self.input_name])]


class FakeSessionFactory:
    """Counts session creations; optionally slow or failing."""

    def __init__(self, delay=0.0, error=None, **session_kwargs):
        self.delay = delay
        self.error = error
        self.session_kwargs = session_kwargs
        self.created: list[FakeSession] = []
        self._lock = threading.Lock()

    def __call__(self, model_path, providers):
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        session = FakeSession(model_path, **self.session_kwargs)
        with self._lock:
            self.created.append(session)
        return session


@pytest.fixture
def models_dir(tmp_path):
    """Directory holding a placeholder file for every built-in style."""
    for entry in STYLE_MODELS.values():
        (tmp_path / entry.model_path).write_bytes(b"onnx")
    return tmp_path


@pytest.fixture
def registry(models_dir):
    return ModelRegistry(models_dir=models_dir)


@pytest.fixture
def factory():
    return FakeSessionFactory()


@pytest.fixture
def rgba_2x2():
    """Red, green, blue, yellow; all opaque."""
    return np.array(
        [255, 0, 0, 255, 0, 255, 0, 255, 0, 0, 255, 255, 255, 255, 0, 255],
        dtype=np.uint8,
    )


@pytest.fixture
def make_factory():
    """Build a FakeSessionFactory with custom behaviour."""
    return FakeSessionFactory
