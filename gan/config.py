"""
Training configuration.

The configuration is assembled as a plain dictionary (defaults, then an
optional config file, then command line overrides) and frozen exactly once
into a ``TrainingConfig`` that is passed explicitly to the model factory,
the dataset reader and the trainer.
"""

import dataclasses
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from gan.errors import ConfigurationError


@dataclass(frozen=True)
class TrainingConfig:
    # Optimizer
    learning_rate: float = 2e-4
    adam_beta1: float = 0.5
    adam_beta2: float = 0.999

    # Data
    batch_size: int = 10
    dataset_size: int = 22
    image_size: int = 64
    channels: int = 3
    dataset_path: Optional[str] = None
    inputs_path: Optional[str] = None

    # Model
    latent_size: int = 100
    generator_dims: Tuple[int, ...] = (1024, 512, 256, 128)
    discriminator_dims: Tuple[int, ...] = (128, 256, 512, 1024)
    kernel_size: int = 5
    anti_checkerboard: bool = True
    batch_norm: bool = False
    dropout: float = 0.0
    leaky_relu_alpha: float = 0.2
    l2_scale: float = 1e-4

    # Training
    seed: Optional[int] = None
    soft_one: float = 0.95
    num_epochs: Optional[int] = None
    device: str = 'auto'
    track_memory: bool = True
    verbose: bool = False

    # Outputs
    tensorboard_dir: Optional[str] = None
    preview_path: Optional[str] = None
    preview_scale: int = 500
    log_dir: str = 'logs'
    checkpoint_dir: str = 'checkpoints'
    checkpoints: bool = True
    recover: bool = False
    save_every: int = 1
    checkpoint_failure_fatal: bool = True

    def __post_init__(self):
        # lists coming from config files are frozen as tuples
        object.__setattr__(self, 'generator_dims', tuple(self.generator_dims))
        object.__setattr__(self, 'discriminator_dims', tuple(self.discriminator_dims))
        self.validate()

    def validate(self):
        """
        Check value ranges and architecture compatibility.

        Raises:
            ConfigurationError: if any field is out of range
        """
        for name in ('batch_size', 'dataset_size', 'image_size', 'latent_size',
                     'kernel_size', 'preview_scale', 'save_every'):
            value = getattr(self, name)
            if not isinstance(value, int) or value < 1:
                raise ConfigurationError(f"{name} must be a positive integer, got {value!r}")

        if self.channels not in (1, 3):
            raise ConfigurationError(f"channels must be 1 or 3, got {self.channels!r}")
        if not 0.0 < self.soft_one <= 1.0:
            raise ConfigurationError(f"soft_one must be in (0, 1], got {self.soft_one!r}")
        if not 0.0 <= self.dropout < 1.0:
            raise ConfigurationError(f"dropout must be in [0, 1), got {self.dropout!r}")
        if self.learning_rate <= 0:
            raise ConfigurationError(f"learning_rate must be positive, got {self.learning_rate!r}")
        if self.num_epochs is not None and self.num_epochs < 1:
            raise ConfigurationError(f"num_epochs must be positive or None, got {self.num_epochs!r}")

        if not self.generator_dims or not self.discriminator_dims:
            raise ConfigurationError("generator_dims and discriminator_dims must not be empty")
        for name in ('generator_dims', 'discriminator_dims'):
            stages = 2 ** len(getattr(self, name))
            if self.image_size % stages != 0:
                raise ConfigurationError(
                    f"image_size {self.image_size} is not divisible by {stages} "
                    f"({len(getattr(self, name))} stages in {name})")

    @property
    def image_shape(self) -> Tuple[int, int, int]:
        """Shape of a single image as (channels, height, width)."""
        return (self.channels, self.image_size, self.image_size)

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> 'TrainingConfig':
        """
        Freeze a configuration dictionary.

        Args:
            config: Configuration dictionary

        Returns:
            Immutable training configuration

        Raises:
            ConfigurationError: on unknown keys or invalid values
        """
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(config) - known)
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {', '.join(unknown)}")
        return cls(**config)

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)


def get_default_config() -> Dict[str, Any]:
    """
    Get default configuration for training.

    Returns:
        Configuration dictionary
    """
    return TrainingConfig().to_dict()
