"""Shared fixtures: a tiny CPU configuration and synthetic image folders."""

from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest
import torch
from torchvision.io import write_png

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from gan.config import TrainingConfig
from gan.runtime import TorchRuntime


def make_config(tmp_path: Path, **overrides) -> TrainingConfig:
    values = dict(
        image_size=16,
        channels=3,
        latent_size=8,
        generator_dims=(16, 8),
        discriminator_dims=(8, 16),
        kernel_size=3,
        batch_size=10,
        dataset_size=22,
        seed=0,
        device='cpu',
        num_epochs=1,
        track_memory=False,
        preview_scale=32,
        log_dir=str(tmp_path / "logs"),
        checkpoint_dir=str(tmp_path / "checkpoints"),
    )
    values.update(overrides)
    return TrainingConfig.from_dict(values)


def write_images(directory: Path, count: int, size: int, start: int = 0):
    """Write ``count`` RGB png files of ``size`` x ``size`` with distinct colors."""
    directory.mkdir(parents=True, exist_ok=True)
    for i in range(start, start + count):
        image = torch.zeros(3, size, size, dtype=torch.uint8)
        image[0] = (i * 10) % 256
        image[1] = 255 - (i * 10) % 256
        image[2] = 128
        write_png(image, str(directory / f"image_{i:03d}.png"))


@pytest.fixture
def config(tmp_path) -> TrainingConfig:
    return make_config(tmp_path)


@pytest.fixture
def runtime() -> TorchRuntime:
    return TorchRuntime(torch.device('cpu'), seed=0)


@pytest.fixture
def dataset() -> torch.Tensor:
    """22 deterministic RGB 16x16 images in [-1, 1]."""
    generator = torch.Generator().manual_seed(1)
    return torch.rand(22, 3, 16, 16, generator=generator) * 2 - 1


@pytest.fixture
def image_dir(tmp_path) -> Path:
    """22 valid 64x64 images and 3 non-image files."""
    directory = tmp_path / "inputs"
    write_images(directory, 22, 64)
    (directory / "notes.txt").write_text("not an image")
    (directory / "meta.json").write_text("{}")
    (directory / "README").write_text("readme")
    return directory
