"""
Scalar metrics sinks.

Each named series keeps its own step counter, starting at 1, so callers
only push values.
"""

import abc
import os
import shutil
from collections import defaultdict
from typing import Dict, Optional

from torch.utils.tensorboard import SummaryWriter


class MetricsSink(abc.ABC):
    """Interface of a scalar metrics sink."""

    @abc.abstractmethod
    def record(self, name: str, value: float):
        """Append ``value`` to the series ``name``."""

    def close(self):
        pass


class NullMetricsSink(MetricsSink):

    def record(self, name: str, value: float):
        pass


class TensorBoardSink(MetricsSink):
    """
    Writes scalar graphs to a TensorBoard log directory.

    Args:
        log_dir: Directory for the event files; previous content is deleted
    """

    def __init__(self, log_dir: str, writer=None):
        self.log_dir = os.path.abspath(log_dir)
        if writer is None:
            # delete old stats
            if os.path.exists(self.log_dir):
                shutil.rmtree(self.log_dir)
            writer = SummaryWriter(self.log_dir)
        self.writer = writer
        self.steps: Dict[str, int] = defaultdict(int)

        print("\n# to view live stats")
        print(f"$ tensorboard --logdir {self.log_dir}")

    def record(self, name: str, value: float):
        self.steps[name] += 1
        self.writer.add_scalar(name, value, self.steps[name])

    def close(self):
        self.writer.flush()
        self.writer.close()


def create_metrics_sink(tensorboard_dir: Optional[str]) -> MetricsSink:
    if not tensorboard_dir:
        return NullMetricsSink()
    return TensorBoardSink(tensorboard_dir)
