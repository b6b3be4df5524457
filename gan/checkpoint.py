"""
Checkpoint store.

A checkpoint directory holds two files:

- ``training_state.pth``: completed epochs, generator and discriminator
  weights and both optimizer states, used to resume training,
- ``generator.pth``: the generator bundle (topology and weights) read by
  ``gan.model.deserialize`` and the inference library.
"""

import os

import torch

from gan.errors import CheckpointError
from gan.model import serialize

STATE_FILE = "training_state.pth"
GENERATOR_FILE = "generator.pth"


def checkpoint_exists(checkpoint_dir: str) -> bool:
    return os.path.exists(os.path.join(checkpoint_dir, STATE_FILE))


def save_checkpoint(trainer):
    """
    Save the training state and the generator bundle.

    Args:
        trainer: Trainer to save checkpoint for

    Raises:
        CheckpointError: if the files cannot be written
    """
    checkpoint_dir = trainer.config.checkpoint_dir
    checkpoint = {
        'epoch': trainer.current_epoch,
        'generator_state_dict': trainer.generator.state_dict(),
        'discriminator_state_dict': trainer.discriminator.state_dict(),
        'd_optimizer_state_dict': trainer.discriminator.optimizer.state_dict(),
        'g_optimizer_state_dict': trainer.combined.optimizer.state_dict(),
    }

    state_path = os.path.join(checkpoint_dir, STATE_FILE)
    generator_path = os.path.join(checkpoint_dir, GENERATOR_FILE)
    try:
        os.makedirs(checkpoint_dir, exist_ok=True)
        # write to a temporary file first so an interrupted save keeps the last checkpoint
        torch.save(checkpoint, state_path + ".tmp")
        os.replace(state_path + ".tmp", state_path)
        serialize(trainer.generator, generator_path + ".tmp")
        os.replace(generator_path + ".tmp", generator_path)
    except (OSError, RuntimeError) as e:
        raise CheckpointError(f"Could not save checkpoint to {checkpoint_dir}: {e}") from e

    print(f"Checkpoint saved to {checkpoint_dir} (epoch {trainer.current_epoch})")


def load_checkpoint(trainer):
    """
    Restore the training state saved by ``save_checkpoint``.

    Args:
        trainer: Trainer to load checkpoint into

    Raises:
        CheckpointError: if the checkpoint cannot be read
    """
    state_path = os.path.join(trainer.config.checkpoint_dir, STATE_FILE)
    try:
        checkpoint = torch.load(state_path, map_location=trainer.runtime.device)
    except Exception as e:
        raise CheckpointError(f"Could not read checkpoint {state_path}: {e}") from e

    try:
        trainer.generator.load_state_dict(checkpoint['generator_state_dict'])
        trainer.discriminator.load_state_dict(checkpoint['discriminator_state_dict'])
        trainer.discriminator.optimizer.load_state_dict(checkpoint['d_optimizer_state_dict'])
        trainer.combined.optimizer.load_state_dict(checkpoint['g_optimizer_state_dict'])
        epoch = checkpoint['epoch']
    except (RuntimeError, KeyError, TypeError, ValueError) as e:
        raise CheckpointError(f"Could not load checkpoint {state_path}: {e}") from e

    trainer.current_epoch = epoch

    print(f"Checkpoint loaded from {state_path}")
    print(f"Resumed from epoch {trainer.current_epoch}")
