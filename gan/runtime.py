"""
Tensor runtime adapter.

The trainer never talks to torch's global state directly for device
placement, random latent sampling, scoped execution or tensor accounting;
it goes through a ``TensorRuntime`` chosen once at startup. This keeps the
CPU and accelerated backends interchangeable and lets tests swap in a
runtime with scripted allocation counts.
"""

import abc
import gc
import sys
from contextlib import contextmanager
from typing import Callable, Optional, Sequence, TypeVar

import torch

from gan.errors import ConfigurationError, ResourceLeakError
from gan.utils import get_device

T = TypeVar('T')


class TensorRuntime(abc.ABC):
    """Capability interface over the tensor library used for training."""

    device: torch.device

    @abc.abstractmethod
    def live_tensors(self) -> int:
        """Number of tensors currently alive in the process."""

    @abc.abstractmethod
    def uniform(self, shape: Sequence[int], low: float = -1.0, high: float = 1.0) -> torch.Tensor:
        """Sample a tensor i.i.d. uniformly from [low, high) on the runtime device."""

    @abc.abstractmethod
    def shuffle(self, n: int) -> torch.Tensor:
        """Random permutation of range(n)."""

    @contextmanager
    def scope(self):
        """
        Scoped region for scratch tensors.

        Everything allocated inside the block and not bound outside of it is
        released when the block exits, on every exit path.
        """
        try:
            yield
        finally:
            self.release()

    def tidy(self, fn: Callable[..., T], *args, **kwargs) -> T:
        """
        Run ``fn`` inside a scope and return its result.

        Only the returned value survives; the closure's locals are dropped
        together with the call frame before the scope is released.
        """
        with self.scope():
            return fn(*args, **kwargs)

    def release(self):
        """Hook run at the end of every scope."""

    def to_device(self, tensor: torch.Tensor) -> torch.Tensor:
        return tensor.to(self.device)


class TorchRuntime(TensorRuntime):
    """
    PyTorch runtime bound to a single device.

    Args:
        device: Device to place tensors on
        seed: Seed of the runtime's random generator (None for nondeterministic)
    """

    def __init__(self, device: torch.device, seed: Optional[int] = None):
        self.device = torch.device(device)
        self.seed = seed
        self.generator = torch.Generator(device=self.device)
        if seed is not None:
            self.generator.manual_seed(seed)
        else:
            self.generator.seed()

    def live_tensors(self) -> int:
        count = 0
        for obj in gc.get_objects():
            try:
                if torch.is_tensor(obj):
                    count += 1
            except ReferenceError:
                # dead weak proxies
                continue
        return count

    def uniform(self, shape: Sequence[int], low: float = -1.0, high: float = 1.0) -> torch.Tensor:
        tensor = torch.rand(tuple(shape), generator=self.generator, device=self.device)
        return tensor.mul_(high - low).add_(low)

    def shuffle(self, n: int) -> torch.Tensor:
        return torch.randperm(n, generator=self.generator, device=self.device)

    def release(self):
        if self.device.type == 'cuda':
            torch.cuda.empty_cache()

    def __repr__(self):
        return f"TorchRuntime(device={self.device}, seed={self.seed})"


def create_runtime(name: str = 'auto', seed: Optional[int] = None) -> TensorRuntime:
    """
    Select the runtime backend.

    Args:
        name: 'auto', 'cpu', 'cuda' or 'mps'
        seed: Seed for the runtime's random generator

    Returns:
        Tensor runtime

    Raises:
        ConfigurationError: if the requested backend is unknown or unavailable
    """
    if name == 'auto':
        return TorchRuntime(get_device(), seed)
    if name == 'cpu':
        return TorchRuntime(torch.device('cpu'), seed)
    if name == 'cuda':
        if not torch.cuda.is_available():
            raise ConfigurationError("CUDA was requested but is not available")
        return TorchRuntime(torch.device('cuda'), seed)
    if name == 'mps':
        if not torch.backends.mps.is_available():
            raise ConfigurationError("MPS was requested but is not available")
        return TorchRuntime(torch.device('mps'), seed)
    raise ConfigurationError(f"Unknown device: {name}")


class MemoryGuard:
    """
    Detects undisposed tensors between training steps.

    The first observation is never checked (the baseline starts at
    ``sys.maxsize``) so one-time setup allocations such as optimizer state
    do not trip the guard. That first count becomes the peak; any later
    count above it is a leak. Counts may drop and climb back to the peak
    without tripping.
    """

    def __init__(self):
        self.previous = sys.maxsize

    def observe(self, count: int):
        """
        Record the live tensor count after a step.

        Raises:
            ResourceLeakError: if the count grew past the baseline
        """
        if count > self.previous:
            raise ResourceLeakError(
                f"Tensors seem to not be disposed properly and keep increasing "
                f"({self.previous} -> {count}).")
        if self.previous == sys.maxsize:
            self.previous = count

    def check(self, runtime: TensorRuntime):
        self.observe(runtime.live_tensors())
