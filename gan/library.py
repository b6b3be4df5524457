"""
Inference-only access to a pre-trained generator.

Example:
    from gan.library import GANLibrary

    library = GANLibrary()
    library.load(url="https://example.org/generator.pth")
    images = library.generate(4)    # list of uint8 arrays (H, W, C)
"""

import os
import time
from typing import List, Optional

import numpy as np
import torch

from gan.errors import CheckpointError, InvalidArgumentError, NotLoadedError
from gan.model import Generator, deserialize
from gan.preview import to_display_range
from gan.runtime import TensorRuntime, create_runtime

DEFAULT_CACHE_PATH = os.path.join(os.path.expanduser("~"), ".cache", "gan", "generator.pth")


class GANLibrary:
    """
    Load a generator bundle once, then generate images from random noise.

    Args:
        cache_path: Local copy of the generator bundle
    """

    def __init__(self, cache_path: str = DEFAULT_CACHE_PATH):
        self.cache_path = cache_path
        self.runtime: Optional[TensorRuntime] = None
        self.model: Optional[Generator] = None
        self.cached = False

    @property
    def loaded(self) -> bool:
        return self.model is not None

    def load(self, runtime: Optional[TensorRuntime] = None, url: Optional[str] = None):
        """
        Load the pre-trained generator.

        The cached bundle is used when it can be read; otherwise the bundle
        is downloaded from ``url``, replacing the cache.

        Args:
            runtime: Runtime to generate on (CPU if omitted)
            url: Location of the published generator bundle

        Raises:
            NotLoadedError: if there is no cached bundle and no url, or the
                download fails
            CheckpointError: if the bundle is unreadable and cannot be fetched again
        """
        self.runtime = runtime if runtime is not None else create_runtime('cpu')
        start = time.perf_counter()

        model = None
        if os.path.exists(self.cache_path):
            try:
                model = self._read_bundle()
                self.cached = True
            except CheckpointError as e:
                if url is None:
                    raise
                print(f"Warning: {e}, fetching the model again")

        if model is None:
            if url is None:
                raise NotLoadedError(f"No cached model at {self.cache_path} and no url to fetch it from")
            self._download(url)
            model = self._read_bundle()
            self.cached = False

        self.model = model

        print(f"gan loading: {(time.perf_counter() - start) * 1000:.0f}ms")

    def _download(self, url: str):
        os.makedirs(os.path.dirname(os.path.abspath(self.cache_path)), exist_ok=True)
        try:
            torch.hub.download_url_to_file(url, self.cache_path, progress=False)
        except (OSError, ValueError) as e:
            raise NotLoadedError(f"Could not fetch model from {url}: {e}") from e

    def _read_bundle(self) -> Generator:
        model = deserialize(self.cache_path, map_location=self.runtime.device)
        if not isinstance(model, Generator):
            raise CheckpointError(f"{self.cache_path} does not hold a generator")
        return model

    def generate(self, n: int = 1) -> List[np.ndarray]:
        """
        Generate images.

        Args:
            n: Number of images, at least 1

        Returns:
            List of ``n`` uint8 arrays of shape (H, W, C) with values in [0, 255]

        Raises:
            NotLoadedError: if called before ``load``
            InvalidArgumentError: if ``n`` is not a positive integer
        """
        if not self.loaded:
            raise NotLoadedError("Cannot use model before loading it.")
        if not isinstance(n, int) or isinstance(n, bool) or n < 1:
            raise InvalidArgumentError(f"n must be an integer >= 1, got {n!r}")

        def run():
            z = self.runtime.uniform((n, self.model.latent_size))
            with torch.no_grad():
                images = to_display_range(self.model(z))
            return images.round().to(torch.uint8).permute(0, 2, 3, 1).cpu().numpy()

        batch = self.runtime.tidy(run)
        return [image for image in batch]
