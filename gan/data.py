"""
Dataset loading and batch iteration.

The dataset is a single float tensor of shape (dataset_size, C, H, W)
with values in [-1, 1], built once per process. It is cached on disk as
raw little-endian float32 values in row-major (N, H, W, C) order with no
header; the shape comes from the configuration.

Batches are handed out by ``BatchIterator``, which keeps at most one
batch alive: the previous batch is released before the next slice is
taken, so memory stays bounded by the batch size however many epochs
are run.
"""

import os
import time
from typing import List, NamedTuple, Optional

import numpy as np
import torch
import torchvision.transforms.functional as TF
from torchvision.io import ImageReadMode, decode_image, read_file

from gan.config import TrainingConfig
from gan.errors import ConfigurationError
from gan.runtime import TensorRuntime

IMAGE_EXTENSIONS = ('.png', '.jpg', '.jpeg')


class Batch(NamedTuple):
    took: int               # ms since the previous batch, 0 for the first
    count: int              # 1-based index within the epoch
    images: torch.Tensor    # dataset view, (<= batch_size, C, H, W)


def expected_cache_bytes(config: TrainingConfig) -> int:
    return config.dataset_size * config.image_size * config.image_size * config.channels * 4


def read_dataset_cache(path: str, config: TrainingConfig) -> torch.Tensor:
    """
    Read a dataset cache file.

    Args:
        path: Cache file
        config: Configuration giving the dataset shape

    Returns:
        Tensor of shape (dataset_size, C, H, W)

    Raises:
        ConfigurationError: if the file size does not match the configured shape
    """
    size = os.path.getsize(path)
    expected = expected_cache_bytes(config)
    if size != expected:
        raise ConfigurationError(
            f"Dataset file {path} holds {size} bytes, expected {expected} for "
            f"{config.dataset_size} images of {config.image_size}x{config.image_size}x{config.channels}")

    array = np.fromfile(path, dtype='<f4')
    array = array.reshape(config.dataset_size, config.image_size, config.image_size, config.channels)
    return torch.from_numpy(array.astype(np.float32)).permute(0, 3, 1, 2).contiguous()


def write_dataset_cache(dataset: torch.Tensor, path: str):
    """
    Write a dataset tensor of shape (N, C, H, W) as raw (N, H, W, C) float32.
    """
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    array = dataset.detach().permute(0, 2, 3, 1).contiguous().cpu().numpy()
    array.astype('<f4').tofile(path)


def list_images(inputs_path: str, limit: int) -> List[str]:
    """
    List image files in a directory.

    Args:
        inputs_path: Directory to scan
        limit: Maximum number of files to return

    Returns:
        Sorted image paths, at most ``limit``
    """
    if not os.path.isdir(inputs_path):
        raise ConfigurationError(f"Inputs directory {inputs_path} does not exist")
    names = sorted(
        name for name in os.listdir(inputs_path)
        if os.path.splitext(name)[1].lower() in IMAGE_EXTENSIONS
    )
    return [os.path.join(inputs_path, name) for name in names[:limit]]


def load_image(path: str, config: TrainingConfig) -> torch.Tensor:
    """
    Decode an image file into a (C, H, W) tensor in [-1, 1].

    Grayscale images are the mean of the RGB channels.
    """
    image = decode_image(read_file(path), mode=ImageReadMode.RGB).float()
    if config.channels == 1:
        image = image.mean(dim=0, keepdim=True)
    if image.shape[1:] != (config.image_size, config.image_size):
        image = TF.resize(image, [config.image_size, config.image_size], antialias=True)
    # Normalize from [0, 255] to [-1, 1]
    return (image / 255 - 0.5) * 2


def build_dataset(config: TrainingConfig, runtime: TensorRuntime) -> torch.Tensor:
    """
    Decode, shuffle and concatenate the images of ``config.inputs_path``.

    Returns:
        Tensor of shape (dataset_size, C, H, W)

    Raises:
        ConfigurationError: if fewer than ``dataset_size`` images are found
    """
    paths = list_images(config.inputs_path, config.dataset_size)
    if len(paths) < config.dataset_size:
        raise ConfigurationError(
            f"Found {len(paths)} images in {config.inputs_path}, "
            f"expected {config.dataset_size}")

    images = []
    for i, path in enumerate(paths, start=1):
        if config.verbose:
            print(f"[{i}] reading {os.path.basename(path)}")
        images.append(load_image(path, config))

    print("shuffling images...")
    order = runtime.shuffle(len(images)).tolist()
    print("merging images...")
    return torch.stack([images[i] for i in order], dim=0)


def load_dataset(config: TrainingConfig, runtime: TensorRuntime) -> torch.Tensor:
    """
    Load the dataset from its cache, or build it from the inputs directory
    and cache it.

    Args:
        config: Training configuration
        runtime: Runtime whose device receives the dataset

    Returns:
        Tensor of shape (dataset_size, C, H, W) on the runtime device

    Raises:
        ConfigurationError: if neither a dataset nor an inputs path can be used
    """
    if not config.dataset_path and not config.inputs_path:
        raise ConfigurationError("Either a dataset file or an inputs directory must be set")

    if config.dataset_path and os.path.exists(config.dataset_path):
        print(f"loading dataset from {config.dataset_path} into memory...")
        dataset = read_dataset_cache(config.dataset_path, config)
    else:
        if not config.inputs_path:
            raise ConfigurationError(
                f"Dataset file {config.dataset_path} does not exist and no inputs directory is set")
        print("generating the dataset...")
        dataset = build_dataset(config, runtime)
        if config.dataset_path:
            write_dataset_cache(dataset, config.dataset_path)
            print(f"Saved {config.dataset_path}")

    return runtime.to_device(dataset)


class BatchIterator:
    """
    Restartable cursor over a dataset.

    Each call to ``next()`` releases the previously returned batch before
    slicing the next one. The final batch is truncated to the remaining
    samples. ``reset()`` rewinds the cursor without touching the dataset.

    Also usable as a plain Python iterator: ``iter()`` resets it.
    """

    def __init__(self, dataset: torch.Tensor, batch_size: int):
        if batch_size < 1:
            raise ConfigurationError(f"batch_size must be positive, got {batch_size}")
        self.dataset = dataset
        self.batch_size = batch_size
        self.index = 0
        self.count = 0
        self.current: Optional[torch.Tensor] = None
        self._last_yield: Optional[float] = None

    def __len__(self):
        return -(-len(self.dataset) // self.batch_size)

    def reset(self):
        self.release()
        self.index = 0
        self.count = 0
        self._last_yield = None

    def release(self):
        self.current = None

    def next(self) -> Optional[Batch]:
        """
        Advance to the next batch.

        Returns:
            The next batch, or None once the dataset has been gone through
        """
        self.release()
        if self.index >= len(self.dataset):
            return None

        self.current = self.dataset[self.index:self.index + self.batch_size]
        self.index += self.batch_size
        self.count += 1

        now = time.perf_counter()
        took = 0 if self._last_yield is None else int((now - self._last_yield) * 1000)
        self._last_yield = now

        return Batch(took, self.count, self.current)

    def __iter__(self):
        self.reset()
        return self

    def __next__(self) -> Batch:
        batch = self.next()
        if batch is None:
            raise StopIteration
        return batch


class DatasetReader:
    """
    Owns the dataset and hands out a fresh pass over it each epoch.

    Example:
        reader = DatasetReader(config, runtime)
        for epoch in range(epochs):
            for took, count, images in reader.batches():
                ...
    """

    def __init__(self, config: TrainingConfig, runtime: TensorRuntime,
                 dataset: Optional[torch.Tensor] = None):
        self.config = config
        self.dataset = load_dataset(config, runtime) if dataset is None else dataset
        self._iterator = BatchIterator(self.dataset, config.batch_size)

    def __len__(self):
        return len(self.dataset)

    def batches(self, batch_size: Optional[int] = None) -> BatchIterator:
        """
        Rewind and return the batch iterator.

        Args:
            batch_size: Override of the configured batch size
        """
        if batch_size is not None and batch_size != self._iterator.batch_size:
            self._iterator.release()
            self._iterator = BatchIterator(self.dataset, batch_size)
        self._iterator.reset()
        return self._iterator

    def sample(self, index: int = 0) -> torch.Tensor:
        """Single dataset image with a batch dimension, shape (1, C, H, W)."""
        return self.dataset[index:index + 1]
