"""
Live preview images.

The trainer pushes one generated image and one dataset image after every
batch. Pixels arrive already scaled to [0, 255].
"""

import abc
import os
from typing import Optional

import torch
import torch.nn.functional as F
from torchvision.io import write_png


def to_display_range(images: torch.Tensor) -> torch.Tensor:
    """Map values from [-1, 1] (generator range) to [0, 255]."""
    return ((images + 1) / 2 * 255).clamp(0, 255)


def upscale(images: torch.Tensor, size: int) -> torch.Tensor:
    """Nearest neighbour resize of (N, C, H, W) images to (N, C, size, size)."""
    return F.interpolate(images, size=(size, size), mode='nearest')


class PreviewSink(abc.ABC):
    """Interface of a preview image sink."""

    enabled = True

    @abc.abstractmethod
    def write(self, pixels: torch.Tensor, is_sample: bool = False):
        """Replace the preview (or the dataset sample) with ``pixels``."""


class NullPreviewSink(PreviewSink):

    enabled = False

    def write(self, pixels: torch.Tensor, is_sample: bool = False):
        pass


class PngPreviewSink(PreviewSink):
    """
    Overwrites ``<name>.png`` with generated images and ``<name>.sample.png``
    with dataset images.

    Args:
        path: Preview file, must end with .png
    """

    def __init__(self, path: str, scale: int = 500):
        self.preview_path = os.path.abspath(path)
        self.sample_path = self.preview_path[:-len('.png')] + '.sample.png'
        os.makedirs(os.path.dirname(self.preview_path), exist_ok=True)

        print("\n# to view live preview")
        print(f"$ feh -Z -g {scale}x{scale} --reload 1 {self.preview_path}")
        print("\n# to view live (dataset) samples")
        print(f"$ feh -Z -g {scale}x{scale} --reload 1 {self.sample_path}")

    def write(self, pixels: torch.Tensor, is_sample: bool = False):
        """
        Args:
            pixels: Image of shape (C, H, W) with values in [0, 255]
            is_sample: Write the dataset sample file instead of the preview
        """
        image = pixels.detach().round().clamp(0, 255).to(torch.uint8).cpu()
        write_png(image, self.sample_path if is_sample else self.preview_path, compression_level=0)


def create_preview_sink(path: Optional[str], scale: int = 500) -> PreviewSink:
    if not path:
        return NullPreviewSink()
    if not path.endswith('.png'):
        print(f"Warning: preview path {path} does not end with .png, preview disabled")
        return NullPreviewSink()
    return PngPreviewSink(path, scale)
