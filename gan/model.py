"""
Generative Adversarial Network (GAN) models with DCGAN architecture.

This module builds the three graphs used during training:

- the generator, mapping a latent vector to an image in [-1, 1],
- the discriminator, mapping an image to a realness probability and
  trained standalone with its own Adam optimizer,
- the combined model, generator followed by the discriminator, whose
  optimizer only sees the generator's weights.

It also provides the two training steps and the model bundle used for
checkpoints and by the inference library.
"""

from typing import Iterator, Tuple

import torch
import torch.nn as nn

from gan.config import TrainingConfig
from gan.errors import CheckpointError, ConfigurationError
from gan.losses import GANLoss, discriminator_targets, generator_targets
from gan.runtime import TensorRuntime
from gan.utils import create_adam, print_model_summary


def init_weights(module: nn.Module):
    """
    Variance scaling (Glorot normal) kernels and zero biases.

    A large initial bias dominates the cost early on and stalls learning,
    so every bias starts at zero and is learned.
    """
    if isinstance(module, (nn.Linear, nn.Conv2d, nn.ConvTranspose2d)):
        nn.init.xavier_normal_(module.weight)
        if module.bias is not None:
            nn.init.zeros_(module.bias)


class Generator(nn.Module):
    """
    DCGAN Generator.

    Generates images from random noise using transposed convolutions.
    """

    def __init__(self,
                 latent_size: int = 100,
                 hidden_dims: Tuple[int, ...] = (1024, 512, 256, 128),
                 out_channels: int = 3,
                 image_size: int = 64,
                 kernel_size: int = 5,
                 anti_checkerboard: bool = True,
                 batch_norm: bool = False):
        """
        Initialize the generator.

        Args:
            latent_size: Dimension of the latent space (noise input)
            hidden_dims: Channels of the projected volume followed by each upsampling stage
            out_channels: Number of output channels (1 for grayscale, 3 for RGB)
            image_size: Size of output images (assumed square)
            kernel_size: Odd kernel size of every transposed convolution
            anti_checkerboard: Add a stride 1 stage before the output stage
            batch_norm: Normalize activations between stages
        """
        super().__init__()

        self.architecture = dict(
            latent_size=latent_size,
            hidden_dims=tuple(hidden_dims),
            out_channels=out_channels,
            image_size=image_size,
            kernel_size=kernel_size,
            anti_checkerboard=anti_checkerboard,
            batch_norm=batch_norm,
        )
        self.latent_size = latent_size
        self.hidden_dims = tuple(hidden_dims)
        self.out_channels = out_channels
        self.image_size = image_size

        # Calculate the initial size after convolutions
        self.initial_size = image_size // (2 ** len(hidden_dims))

        # Initial linear layer to project from latent to conv input
        self.fc = nn.Linear(latent_size, hidden_dims[0] * self.initial_size ** 2, bias=False)

        modules = []
        in_channels = hidden_dims[0]

        for i in range(len(hidden_dims) - 1):
            modules.extend(self._stage(in_channels, hidden_dims[i + 1], kernel_size, 2, batch_norm))
            in_channels = hidden_dims[i + 1]

        # see https://distill.pub/2016/deconv-checkerboard/
        if anti_checkerboard:
            modules.extend(self._stage(in_channels, in_channels, kernel_size, 1, batch_norm))

        # Final layer to output channels
        modules.extend([
            nn.ConvTranspose2d(in_channels, out_channels, kernel_size, stride=2,
                               padding=kernel_size // 2, output_padding=1),
            nn.Tanh()  # Output values between -1 and 1
        ])

        self.generator = nn.Sequential(*modules)
        self.apply(init_weights)

    @staticmethod
    def _stage(in_channels, out_channels, kernel_size, stride, batch_norm):
        layers = [nn.ConvTranspose2d(in_channels, out_channels, kernel_size, stride=stride,
                                     padding=kernel_size // 2, output_padding=stride - 1)]
        if batch_norm:
            layers.append(nn.BatchNorm2d(out_channels))
        layers.append(nn.ReLU())
        return layers

    def regularized_kernels(self) -> Iterator[torch.Tensor]:
        for module in self.generator:
            if isinstance(module, nn.ConvTranspose2d):
                yield module.weight

    def forward(self, z: torch.Tensor) -> torch.Tensor:
        """
        Forward pass of the generator.

        Args:
            z: Latent tensor of shape (batch_size, latent_size)

        Returns:
            Generated image tensor of shape (batch_size, channels, height, width)
        """
        x = self.fc(z)
        x = x.view(x.size(0), self.hidden_dims[0], self.initial_size, self.initial_size)
        return self.generator(x)


class Discriminator(nn.Module):
    """
    DCGAN Discriminator.

    Classifies images as real or fake using convolutional layers.
    """

    def __init__(self,
                 in_channels: int = 3,
                 hidden_dims: Tuple[int, ...] = (128, 256, 512, 1024),
                 image_size: int = 64,
                 kernel_size: int = 5,
                 anti_checkerboard: bool = True,
                 batch_norm: bool = False,
                 dropout: float = 0.0,
                 leaky_relu_alpha: float = 0.2):
        """
        Initialize the discriminator.

        Args:
            in_channels: Number of input channels
            hidden_dims: Channels of each downsampling stage
            image_size: Size of input images (assumed square)
            kernel_size: Odd kernel size of every convolution
            anti_checkerboard: Add a stride 1 stage after the first stage, mirroring the generator
            batch_norm: Normalize activations between stages
            dropout: Dropout rate after each stage (0 disables it)
            leaky_relu_alpha: Negative slope of the leaky ReLU activations
        """
        super().__init__()

        self.architecture = dict(
            in_channels=in_channels,
            hidden_dims=tuple(hidden_dims),
            image_size=image_size,
            kernel_size=kernel_size,
            anti_checkerboard=anti_checkerboard,
            batch_norm=batch_norm,
            dropout=dropout,
            leaky_relu_alpha=leaky_relu_alpha,
        )
        self.in_channels = in_channels
        self.hidden_dims = tuple(hidden_dims)
        self.image_size = image_size

        modules = []
        channels = in_channels

        for i, h_dim in enumerate(hidden_dims):
            modules.extend(self._stage(channels, h_dim, kernel_size, 2,
                                       batch_norm, dropout, leaky_relu_alpha))
            channels = h_dim
            if i == 0 and anti_checkerboard:
                modules.extend(self._stage(channels, channels, kernel_size, 1,
                                           batch_norm, dropout, leaky_relu_alpha))

        self.discriminator = nn.Sequential(*modules)

        # Calculate the size after convolutions
        self.conv_output_size = image_size // (2 ** len(hidden_dims))
        self.conv_output_channels = hidden_dims[-1]

        # Final classification layer
        self.classifier = nn.Sequential(
            nn.Linear(self.conv_output_channels * self.conv_output_size ** 2, 1),
            nn.Sigmoid()  # Output probability between 0 and 1
        )
        self.apply(init_weights)

    @staticmethod
    def _stage(in_channels, out_channels, kernel_size, stride, batch_norm, dropout, alpha):
        layers = [nn.Conv2d(in_channels, out_channels, kernel_size, stride=stride,
                            padding=kernel_size // 2)]
        if batch_norm:
            layers.append(nn.BatchNorm2d(out_channels))
        layers.append(nn.LeakyReLU(alpha))
        if dropout > 0:
            layers.append(nn.Dropout(dropout))
        return layers

    def regularized_kernels(self) -> Iterator[torch.Tensor]:
        for module in self.discriminator:
            if isinstance(module, nn.Conv2d):
                yield module.weight
        yield self.classifier[0].weight

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        """
        Forward pass of the discriminator.

        Args:
            x: Input tensor of shape (batch_size, channels, height, width)

        Returns:
            Probability tensor of shape (batch_size, 1)
        """
        x = self.discriminator(x)
        x = x.view(x.size(0), -1)
        return self.classifier(x)


class Combined(nn.Module):
    """
    Generator followed by the discriminator.

    Both sub-models are shared by reference; training the combined model
    only moves the generator's weights.
    """

    def __init__(self, generator: Generator, discriminator: Discriminator):
        super().__init__()
        self.generator = generator
        self.discriminator = discriminator

    def regularized_kernels(self) -> Iterator[torch.Tensor]:
        yield from self.generator.regularized_kernels()
        yield from self.discriminator.regularized_kernels()

    def train(self, mode: bool = True):
        super().train(mode)
        # the discriminator's running statistics only move in its own step
        for module in self.discriminator.modules():
            if isinstance(module, nn.BatchNorm2d):
                module.eval()
        return self

    def forward(self, z: torch.Tensor) -> torch.Tensor:
        return self.discriminator(self.generator(z))


MODEL_CLASSES = {
    'Generator': Generator,
    'Discriminator': Discriminator,
}


def set_trainable(model: nn.Module, trainable: bool):
    for param in model.parameters():
        param.requires_grad_(trainable)


def compile_model(model: nn.Module, config: TrainingConfig):
    """
    Attach an Adam optimizer over the currently trainable parameters and
    the regularized binary cross entropy loss.
    """
    model.optimizer = create_adam(
        (p for p in model.parameters() if p.requires_grad),
        config.learning_rate, config.adam_beta1, config.adam_beta2)
    model.loss_fn = GANLoss(config.l2_scale)


def _check_kernel_size(config: TrainingConfig):
    if config.kernel_size % 2 == 0:
        raise ConfigurationError(f"kernel_size must be odd, got {config.kernel_size}")


def create_generator(config: TrainingConfig, device=None) -> Generator:
    """
    Create the generator.

    The generator is not compiled: it is only ever trained through the
    combined model.
    """
    _check_kernel_size(config)
    if config.seed is not None:
        torch.manual_seed(config.seed)
    model = Generator(
        latent_size=config.latent_size,
        hidden_dims=config.generator_dims,
        out_channels=config.channels,
        image_size=config.image_size,
        kernel_size=config.kernel_size,
        anti_checkerboard=config.anti_checkerboard,
        batch_norm=config.batch_norm,
    ).to(device)
    print_model_summary(model, "Generator", verbose=config.verbose)
    return model


def create_discriminator(config: TrainingConfig, device=None) -> Discriminator:
    """
    Create the discriminator, compiled with its own Adam optimizer.
    """
    _check_kernel_size(config)
    if config.seed is not None:
        torch.manual_seed(config.seed)
    model = Discriminator(
        in_channels=config.channels,
        hidden_dims=config.discriminator_dims,
        image_size=config.image_size,
        kernel_size=config.kernel_size,
        anti_checkerboard=config.anti_checkerboard,
        batch_norm=config.batch_norm,
        dropout=config.dropout,
        leaky_relu_alpha=config.leaky_relu_alpha,
    ).to(device)
    compile_model(model, config)
    print_model_summary(model, "Discriminator", verbose=config.verbose)
    return model


def create_combined_model(generator: Generator, discriminator: Discriminator,
                          config: TrainingConfig) -> Combined:
    """
    Create the combined model used to train the generator.

    The discriminator is frozen while the combined optimizer is built so
    that only the generator's weights are registered with it, then made
    trainable again for its own standalone updates.
    """
    combined = Combined(generator, discriminator)
    set_trainable(discriminator, False)
    try:
        compile_model(combined, config)
    finally:
        set_trainable(discriminator, True)
    print_model_summary(combined, "Combined", verbose=False)
    return combined


def train_on_batch(model: nn.Module, x: torch.Tensor, y: torch.Tensor) -> float:
    """
    Run one optimizer step of a compiled model.

    Returns:
        Loss before the update
    """
    model.train()
    model.zero_grad(set_to_none=True)
    predictions = model(x)
    loss = model.loss_fn(model, predictions, y)
    loss.backward()
    model.optimizer.step()
    return loss.item()


def discriminator_batch(generator: Generator, real_batch: torch.Tensor,
                        runtime: TensorRuntime, config: TrainingConfig):
    """
    Build the discriminator inputs for a batch of ``b`` real images.

    Returns:
        Tuple of (images, labels): ``2b`` images (real then generated) and
        ``b`` soft ones followed by ``b`` zeros
    """
    # the last batch of an epoch can be smaller than config.batch_size
    batch_size = real_batch.size(0)
    z = runtime.uniform((batch_size, config.latent_size))

    generator.eval()
    with torch.no_grad():
        fake_images = generator(z)
    generator.train()

    x = torch.cat([real_batch, fake_images], dim=0)
    y = discriminator_targets(batch_size, config.soft_one, device=runtime.device)
    return x, y


def generator_batch(batch_size: int, runtime: TensorRuntime, config: TrainingConfig):
    """
    Build the combined model inputs for a real batch of ``batch_size``.

    The generator sees twice the real batch size to even things out with
    the discriminator, which sees real and generated images.

    Returns:
        Tuple of (latent vectors, labels), both with ``2 * batch_size`` rows
    """
    z = runtime.uniform((batch_size * 2, config.latent_size))
    y = generator_targets(batch_size * 2, config.soft_one, device=runtime.device)
    return z, y


def train_discriminator(generator: Generator, discriminator: Discriminator,
                        real_batch: torch.Tensor, runtime: TensorRuntime,
                        config: TrainingConfig) -> float:
    """
    Train the discriminator on real images and as many generated ones.

    Returns:
        Discriminator loss
    """
    def step():
        x, y = discriminator_batch(generator, real_batch, runtime, config)
        return train_on_batch(discriminator, x, y)

    return runtime.tidy(step)


def train_generator(combined: Combined, batch_size: int, runtime: TensorRuntime,
                    config: TrainingConfig) -> float:
    """
    Train the generator (inside the combined model) to have its images
    discriminated as real.

    Returns:
        Generator loss
    """
    def step():
        z, y = generator_batch(batch_size, runtime, config)
        return train_on_batch(combined, z, y)

    return runtime.tidy(step)


def serialize(model: nn.Module, path: str):
    """
    Save a model's topology and weights.

    Args:
        model: Generator or Discriminator
        path: Destination file
    """
    torch.save({
        'class': type(model).__name__,
        'architecture': model.architecture,
        'state_dict': model.state_dict(),
    }, path)


def deserialize(path: str, map_location=None) -> nn.Module:
    """
    Load a model saved with ``serialize``.

    Args:
        path: Model bundle file
        map_location: Device to load the weights on

    Returns:
        Model in eval mode
    """
    try:
        bundle = torch.load(path, map_location=map_location)
    except Exception as e:
        # truncated files surface as IndexError or EOFError from the unpickler
        raise CheckpointError(f"Could not read model bundle {path}: {e}") from e
    if not isinstance(bundle, dict) or bundle.get('class') not in MODEL_CLASSES:
        raise CheckpointError(f"{path} is not a model bundle")

    try:
        model = MODEL_CLASSES[bundle['class']](**bundle['architecture'])
        model.load_state_dict(bundle['state_dict'])
    except (RuntimeError, KeyError, TypeError) as e:
        raise CheckpointError(f"{path} holds an inconsistent model bundle: {e}") from e
    if map_location is not None:
        model.to(map_location)
    model.eval()
    return model
