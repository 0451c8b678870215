"""stylebridge: neural style transfer through a cached ONNX inference bridge."""

__version__ = "0.1.0"
