"""Style model registry."""

import logging
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Iterable, Optional

from ..errors import UnknownStyleError

logger = logging.getLogger(__name__)


@dataclass
class StyleEntry:
    """A style model and its tensor I/O metadata."""

    id: str
    name: str
    description: str
    model_path: str  # Relative to the models directory, or absolute
    recommended_pixels: int = 224  # Resolution the model was trained at

    # Discovered from the model on first session creation, then fixed
    input_tensor_name: Optional[str] = None
    output_tensor_name: Optional[str] = None

    @property
    def io_discovered(self) -> bool:
        """True once both tensor names are known."""
        return self.input_tensor_name is not None and self.output_tensor_name is not None

    def discover_io(self, input_name: str, output_name: str) -> None:
        """
        Record the model's tensor names.

        Only missing names are filled in. A name that is already set is
        kept, even if the model now reports a different one.
        """
        if self.input_tensor_name is None:
            self.input_tensor_name = input_name
        elif self.input_tensor_name != input_name:
            logger.warning(
                "Style %s: keeping input tensor %r, model reports %r",
                self.id, self.input_tensor_name, input_name,
            )

        if self.output_tensor_name is None:
            self.output_tensor_name = output_name
        elif self.output_tensor_name != output_name:
            logger.warning(
                "Style %s: keeping output tensor %r, model reports %r",
                self.id, self.output_tensor_name, output_name,
            )


# Fast neural style models from the ONNX model zoo
STYLE_MODELS: dict[str, StyleEntry] = {
    "candy": StyleEntry(
        id="candy",
        name="Candy",
        description="Bright candy-coloured swirls",
        model_path="candy-9.onnx",
    ),
    "mosaic": StyleEntry(
        id="mosaic",
        name="Mosaic",
        description="Stained-glass mosaic tiles",
        model_path="mosaic-9.onnx",
    ),
    "udnie": StyleEntry(
        id="udnie",
        name="Udnie",
        description="Picabia's cubist abstraction",
        model_path="udnie-9.onnx",
    ),
    "rain_princess": StyleEntry(
        id="rain_princess",
        name="Rain Princess",
        description="Afremov's rainy palette-knife colours",
        model_path="rain-princess-9.onnx",
    ),
    "pointilism": StyleEntry(
        id="pointilism",
        name="Pointillism",
        description="Seurat-like dotted brushwork",
        model_path="pointilism-9.onnx",
    ),
}


class ModelRegistry:
    """
    Maps style ids to model artifacts.

    Each registry holds its own copies of the entries, so tensor names
    discovered by one registry never leak into another.
    """

    def __init__(
        self,
        models_dir: Path = Path("models"),
        entries: Optional[Iterable[StyleEntry]] = None,
    ):
        self.models_dir = Path(models_dir)
        source = STYLE_MODELS.values() if entries is None else entries
        self._entries: dict[str, StyleEntry] = {e.id: replace(e) for e in source}

    def lookup(self, style_id: str) -> StyleEntry:
        """Get the entry for a style, or raise UnknownStyleError."""
        entry = self._entries.get(style_id)
        if entry is None:
            raise UnknownStyleError(style_id)
        return entry

    def resolve_path(self, entry: StyleEntry) -> Path:
        """Absolute location of a style's model file."""
        path = Path(entry.model_path)
        if not path.is_absolute():
            path = self.models_dir / path
        return path

    def list_styles(self) -> list[StyleEntry]:
        """All registered styles, in table order."""
        return list(self._entries.values())

    def __contains__(self, style_id: str) -> bool:
        return style_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)
