"""stylebridge command line entry point."""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

from PIL import Image

from .config import get_settings
from .errors import BridgeError, ShapeError, UnknownStyleError
from .inference import (
    HostRuntime,
    InferenceBridge,
    ModelRegistry,
    PixelBuffer,
    StyleRequest,
    Stylizer,
)

logger = logging.getLogger("stylebridge")

EXIT_OK = 0
EXIT_BAD_ARGS = 1
EXIT_UNKNOWN_STYLE = 2
EXIT_SESSION_CREATION = 3
EXIT_INFERENCE = 4

_BRIDGE_EXIT_CODES = {
    BridgeError.UNKNOWN_STYLE: EXIT_UNKNOWN_STYLE,
    BridgeError.SESSION_CREATION: EXIT_SESSION_CREATION,
}


def parse_args(argv: Optional[list[str]] = None):
    """Parse command line arguments."""
    settings = get_settings()
    parser = argparse.ArgumentParser(
        description="Apply a neural style-transfer model to an image",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  stylebridge photo.jpg -s candy                  # Writes photo_candy.png
  stylebridge photo.jpg -s mosaic --strength 0.6  # Blend with the original
  stylebridge --list-styles                       # Show registered styles
        """,
    )

    parser.add_argument(
        "input",
        type=Path,
        nargs="?",
        help="Image to stylize",
    )

    parser.add_argument(
        "--style", "-s",
        default="candy",
        help="Style id (default: candy)",
    )

    parser.add_argument(
        "--output", "-o",
        type=Path,
        default=None,
        help="Output image path (default: <input>_<style>.png)",
    )

    parser.add_argument(
        "--strength",
        type=float,
        default=1.0,
        help="Blend factor, 0 = original, 1 = fully stylized (default: 1.0)",
    )

    parser.add_argument(
        "--models", "-m",
        type=Path,
        default=settings.models_dir,
        help=f"Directory with the .onnx style models (default: {settings.models_dir})",
    )

    parser.add_argument(
        "--device",
        choices=["auto", "cuda", "mps", "cpu"],
        default=settings.device,
        help=f"Compute device (default: {settings.device})",
    )

    parser.add_argument(
        "--fit",
        action="store_true",
        help="Run the model at its recommended resolution and scale the result back",
    )

    parser.add_argument(
        "--list-styles",
        action="store_true",
        help="List registered styles and exit",
    )

    args = parser.parse_args(argv)
    if not args.list_styles and args.input is None:
        parser.error("an input image is required")
    return args


def setup_logging(level: str) -> None:
    formatter = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    logging.basicConfig(format=formatter, level=getattr(logging, level, logging.INFO))


def default_output_path(input_path: Path, style_id: str) -> Path:
    return input_path.with_name(f"{input_path.stem}_{style_id}.png")


async def stylize_file(
    host: HostRuntime,
    image: Image.Image,
    request: StyleRequest,
    fit: bool = False,
) -> Image.Image:
    """Stylize a PIL image through the host runtime."""
    original_size = image.size
    if fit:
        side = host.registry.lookup(request.style_id).recommended_pixels
        image = image.resize((side, side), Image.Resampling.LANCZOS)

    stylizer = Stylizer(InferenceBridge(host), tensor_range=get_settings().tensor_range)
    result = await stylizer.stylize(PixelBuffer.from_image(image), request)
    logger.info(
        "Applied %s (strength %.2f) in %.0fms",
        result.style_applied, result.strength, result.inference_time_ms,
    )

    output = result.pixels.to_image()
    if output.size != original_size:
        output = output.resize(original_size, Image.Resampling.LANCZOS)
    return output


def list_styles(registry: ModelRegistry) -> None:
    for entry in registry.list_styles():
        path = registry.resolve_path(entry)
        marker = "" if path.is_file() else "  (model missing)"
        print(f"{entry.id:<15} {entry.name:<15} {entry.description}{marker}")


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)
    settings = get_settings()
    setup_logging(settings.log_level)

    registry = ModelRegistry(models_dir=args.models)

    if args.list_styles:
        list_styles(registry)
        return EXIT_OK

    try:
        request = StyleRequest(style_id=args.style, strength=args.strength)
        registry.lookup(request.style_id)
    except ValueError as e:
        logger.error("%s", e)
        return EXIT_BAD_ARGS
    except UnknownStyleError as e:
        logger.error("%s. Available: %s", e.message, ", ".join(s.id for s in registry.list_styles()))
        return EXIT_UNKNOWN_STYLE

    try:
        image = Image.open(args.input)
        image.load()
    except OSError as e:
        logger.error("Cannot read %s: %s", args.input, e)
        return EXIT_BAD_ARGS
    output_path = args.output or default_output_path(args.input, request.style_id)

    try:
        with HostRuntime(registry, device=args.device, workers=settings.host_workers) as host:
            output = asyncio.run(stylize_file(host, image, request, fit=args.fit))
    except BridgeError as e:
        logger.error("Stylize failed (%s): %s", e.kind, e.message)
        return _BRIDGE_EXIT_CODES.get(e.kind, EXIT_INFERENCE)
    except ShapeError as e:
        logger.error("Stylize failed: %s", e.message)
        return EXIT_INFERENCE

    output.save(output_path)
    logger.info("Saved %s", output_path)
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
