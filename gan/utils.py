import importlib.util
import os
import random
from typing import Any, Dict, Iterable

import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
import numpy as np
import torch
import torch.nn as nn
import torchvision.utils as vutils

from gan.errors import ConfigurationError


def set_seed(seed: int):
    """
    Seed python, numpy and torch, and make cuDNN pick deterministic kernels.

    The runtime's latent sampler has its own generator, seeded separately.
    """
    random.seed(seed)
    np.random.seed(seed)
    torch.manual_seed(seed)
    torch.cuda.manual_seed_all(seed)
    torch.backends.cudnn.deterministic = True
    torch.backends.cudnn.benchmark = False
    os.environ['PYTHONHASHSEED'] = str(seed)


def count_parameters(model: nn.Module) -> int:
    """Number of weights with ``requires_grad`` set."""
    return sum(p.numel() for p in model.parameters() if p.requires_grad)


def get_device() -> torch.device:
    """CUDA if present, then Apple MPS, then CPU."""
    if torch.cuda.is_available():
        return torch.device("cuda")
    if torch.backends.mps.is_available():
        return torch.device("mps")
    return torch.device("cpu")


def create_adam(parameters: Iterable[nn.Parameter], learning_rate: float,
                beta1: float, beta2: float) -> torch.optim.Optimizer:
    """
    Create an Adam optimizer over the given parameters.

    Args:
        parameters: Parameters the optimizer is allowed to update
        learning_rate: Learning rate
        beta1: Exponential decay rate for the first moment estimates
        beta2: Exponential decay rate for the second moment estimates

    Returns:
        Optimizer
    """
    return torch.optim.Adam(list(parameters), lr=learning_rate, betas=(beta1, beta2))


def log_hyperparameters(config: Dict[str, Any], log_dir: str = "logs"):
    """
    Log hyperparameters to file.

    Args:
        config: Configuration dictionary
        log_dir: Directory to save logs
    """
    os.makedirs(log_dir, exist_ok=True)

    with open(os.path.join(log_dir, "config.txt"), "w") as f:
        for key, value in config.items():
            f.write(f"{key}: {value}\n")


def log_metrics(log_dir: str, d_loss: float, g_loss: float, epoch: int):
    """
    Append the mean losses of an epoch to the training log.

    Args:
        log_dir: Directory holding training_log.txt
        d_loss: Mean discriminator loss
        g_loss: Mean generator loss
        epoch: Current epoch (1-based)
    """
    os.makedirs(log_dir, exist_ok=True)
    log_file = os.path.join(log_dir, "training_log.txt")
    # Create file from scratch if first epoch
    if epoch == 1 and os.path.exists(log_file):
        os.remove(log_file)
    with open(log_file, "a") as f:
        f.write(f"Epoch {epoch}: D Loss: {d_loss:.6f}, G Loss: {g_loss:.6f}\n")


def compute_model_size_mb(model: nn.Module) -> float:
    """Memory held by parameters and buffers (BatchNorm statistics), in MB."""
    tensors = list(model.parameters()) + list(model.buffers())
    return sum(t.nelement() * t.element_size() for t in tensors) / 1024 / 1024


def print_model_summary(model: nn.Module, name: str = "Model", verbose: bool = False):
    """
    Print model summary including parameter count and size.

    Args:
        model: Model to summarize
        name: Title printed above the summary
        verbose: Also print the module structure
    """
    total_params = count_parameters(model)
    model_size = compute_model_size_mb(model)

    print(f"{name} Summary:")
    print(f"  Trainable parameters: {total_params:,}")
    print(f"  Model size: {model_size:.2f} MB")
    if verbose:
        print(f"  Model structure:")
        print(model)


def save_image_grid(images: torch.Tensor, filepath: str, nrow: int = 4):
    """
    Save a grid of images.

    Args:
        images: Tensor of images in [-1, 1], shape (N, C, H, W)
        filepath: Path to save the grid
        nrow: Number of images per row
    """
    images = ((images + 1) / 2).clamp(0, 1)
    grid = vutils.make_grid(images, nrow=nrow, normalize=False, padding=2)
    vutils.save_image(grid, filepath)


def load_config(config_path: str, default_config: dict) -> dict:
    """
    Overlay the ``DEFAULT_CONFIG`` dict of a Python config file (see
    ``configs/``) on a copy of ``default_config``.

    Raises:
        ConfigurationError: if the file does not exist
    """
    if not os.path.isfile(config_path):
        raise ConfigurationError(f"Config file {config_path} does not exist")

    spec = importlib.util.spec_from_file_location("config", config_path)
    config_module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(config_module)

    config = dict(default_config)
    config.update(getattr(config_module, 'DEFAULT_CONFIG', {}))
    return config


def plot_losses(log_file: str, save_path: str):
    """
    Plot the per-epoch mean losses written by ``log_metrics``.

    Args:
        log_file: training_log.txt
        save_path: Output image
    """
    epochs, d_losses, g_losses = [], [], []

    with open(log_file, 'r') as f:
        for line in f:
            if not line.startswith('Epoch'):
                continue
            # "Epoch X: D Loss: 0.123456, G Loss: 0.123456"
            parts = line.strip().split(':')
            epochs.append(int(parts[0].split()[1]))
            d_losses.append(float(parts[2].split(',')[0]))
            g_losses.append(float(parts[3]))

    plt.figure(figsize=(10, 5))
    plt.plot(epochs, d_losses, label='Discriminator Loss')
    plt.plot(epochs, g_losses, label='Generator Loss')
    plt.xlabel('Epochs')
    plt.ylabel('Loss')
    plt.title('Discriminator and Generator Loss Over Time')
    plt.legend()
    plt.grid(True)
    plt.savefig(save_path)
    plt.close()
