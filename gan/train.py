"""
GAN Trainer for training Generative Adversarial Networks on image folders.

Every batch runs, in this order: a discriminator step, a generator step
(through the combined model), metrics update, the memory guard, the live
preview and, at epoch boundaries, a checkpoint.
"""

import argparse
import itertools
import os
import signal
import sys
import threading
from typing import Dict, Optional

import numpy as np
import torch
from tqdm import tqdm

from gan.board import MetricsSink, create_metrics_sink
from gan.checkpoint import checkpoint_exists, load_checkpoint, save_checkpoint
from gan.config import TrainingConfig, get_default_config
from gan.data import DatasetReader
from gan.errors import CheckpointError, ConfigurationError, ResourceLeakError
from gan.model import (
    create_combined_model, create_discriminator, create_generator,
    train_discriminator, train_generator,
)
from gan.preview import PreviewSink, create_preview_sink, to_display_range, upscale
from gan.runtime import MemoryGuard, TensorRuntime, create_runtime
from gan.utils import load_config, log_hyperparameters, log_metrics, plot_losses, set_seed


class GANTrainer:
    """
    GAN Trainer.
    Handles the training loop, metrics, previews and checkpointing.
    """

    def __init__(self, config: TrainingConfig,
                 runtime: Optional[TensorRuntime] = None,
                 reader: Optional[DatasetReader] = None,
                 metrics: Optional[MetricsSink] = None,
                 preview: Optional[PreviewSink] = None):
        """
        Initialize the GAN trainer.

        Args:
            config: Training configuration
            runtime: Tensor runtime (selected from ``config.device`` if omitted)
            reader: Dataset reader (built from the configured paths if omitted)
            metrics: Scalar metrics sink (TensorBoard if configured)
            preview: Preview image sink (PNG files if configured)
        """
        self.config = config

        # Set seed for reproducibility
        if config.seed is not None:
            set_seed(config.seed)

        self.runtime = runtime if runtime is not None else create_runtime(config.device, config.seed)

        # the dataset is loaded first so a bad path fails before the models are built
        self.reader = reader if reader is not None else DatasetReader(config, self.runtime)

        self.discriminator = create_discriminator(config, self.runtime.device)
        self.generator = create_generator(config, self.runtime.device)
        self.combined = create_combined_model(self.generator, self.discriminator, config)

        self.metrics = metrics if metrics is not None else create_metrics_sink(config.tensorboard_dir)
        self.preview = preview if preview is not None else create_preview_sink(
            config.preview_path, config.preview_scale)
        self.memory_guard = MemoryGuard()

        # Training state
        self.current_epoch = 0
        self.global_step = 0
        self.stop_requested = False
        self._saved_epoch = None

        log_hyperparameters(config.to_dict(), config.log_dir)

        if config.checkpoints and config.recover and checkpoint_exists(config.checkpoint_dir):
            load_checkpoint(self)
            self._saved_epoch = self.current_epoch

    def generate(self, num_samples: int = 1) -> torch.Tensor:
        """
        Generate images without tracking gradients.

        Returns:
            Tensor of shape (num_samples, C, H, W) in [-1, 1]
        """
        z = self.runtime.uniform((num_samples, self.config.latent_size))
        self.generator.eval()
        with torch.no_grad():
            images = self.generator(z)
        self.generator.train()
        return images

    def realness_scores(self, real_images: torch.Tensor):
        """
        Discriminator output for the first real image and for a fresh fake.

        Returns:
            Tuple of (real score, fake score)
        """
        def score():
            fake = self.generate(1)
            self.discriminator.eval()
            with torch.no_grad():
                real_score = self.discriminator(real_images[:1]).item()
                fake_score = self.discriminator(fake).item()
            self.discriminator.train()
            return real_score, fake_score

        return self.runtime.tidy(score)

    def train_step(self, real_images: torch.Tensor) -> Dict[str, float]:
        """
        Single training step.

        Args:
            real_images: Batch of real images

        Returns:
            Dictionary containing loss values
        """
        d_loss = train_discriminator(self.generator, self.discriminator, real_images,
                                     self.runtime, self.config)
        g_loss = train_generator(self.combined, real_images.size(0), self.runtime, self.config)
        return {'d_loss': d_loss, 'g_loss': g_loss}

    def update_metrics(self, losses: Dict[str, float], real_images: torch.Tensor):
        self.metrics.record('Discriminator loss', losses['d_loss'])
        self.metrics.record('Generator loss', losses['g_loss'])

        real_score, fake_score = self.realness_scores(real_images)
        self.metrics.record('Realness score (real)', real_score)
        self.metrics.record('Realness score (fake)', fake_score)

    def check_memory(self):
        if self.config.track_memory:
            self.memory_guard.check(self.runtime)

    def render_preview(self, real_images: torch.Tensor):
        """
        Write a generated image and a dataset image to the preview sink.
        Failures are reported and skipped.
        """
        if not self.preview.enabled:
            return

        def render():
            scale = self.config.preview_scale
            fake = upscale(self.generate(1), scale)
            real = upscale(real_images[:1], scale)
            self.preview.write(to_display_range(fake)[0])
            self.preview.write(to_display_range(real)[0], is_sample=True)

        try:
            self.runtime.tidy(render)
        except (OSError, RuntimeError) as e:
            print(f"Warning: could not update preview: {e}")

    def save(self):
        """
        Save a checkpoint if checkpointing is enabled.

        Raises:
            CheckpointError: if saving fails and failures are fatal
        """
        if not self.config.checkpoints:
            return
        try:
            save_checkpoint(self)
            self._saved_epoch = self.current_epoch
        except CheckpointError as e:
            if self.config.checkpoint_failure_fatal:
                raise
            print(f"Warning: {e}")

    def train_epoch(self, epoch: int) -> Dict[str, float]:
        """
        Go through the dataset once.

        Returns:
            Mean losses over the batches that ran
        """
        total = f"/{self.config.num_epochs}" if self.config.num_epochs else ""
        iterator = self.reader.batches()
        pbar = tqdm(iterator, total=len(iterator), desc=f"Epoch {epoch + 1}{total}")

        train_losses = []
        for took, count, real_images in pbar:
            step_losses = self.train_step(real_images)
            train_losses.append(step_losses)

            self.update_metrics(step_losses, real_images)
            self.check_memory()
            self.render_preview(real_images)

            pbar.set_postfix({
                'D Loss': f"{step_losses['d_loss']:.6f}",
                'G Loss': f"{step_losses['g_loss']:.6f}",
                'took': f"{took}ms",
            })
            if self.config.verbose:
                tqdm.write(
                    f"epoch: {epoch + 1}{total} | batch: {count} | "
                    f"dLoss: {step_losses['d_loss']:.6f} | gLoss: {step_losses['g_loss']:.6f} | "
                    f"took: {took}ms")

            self.global_step += 1
            if self.stop_requested:
                break
        pbar.close()

        if not train_losses:
            return {'d_loss': float('nan'), 'g_loss': float('nan')}
        return {
            'd_loss': float(np.mean([l['d_loss'] for l in train_losses])),
            'g_loss': float(np.mean([l['g_loss'] for l in train_losses])),
        }

    def request_stop(self, signum=None, frame=None):
        if self.stop_requested:
            # second interrupt: stop right away
            raise KeyboardInterrupt
        print("\nInterrupt received, finishing the current batch...")
        self.stop_requested = True

    def _install_signal_handlers(self):
        if threading.current_thread() is not threading.main_thread():
            return {}
        previous = {}
        for signum in (signal.SIGINT, signal.SIGTERM):
            previous[signum] = signal.signal(signum, self.request_stop)
        return previous

    def train(self):
        """
        Main training loop.

        Runs ``config.num_epochs`` epochs (forever if None) or until
        interrupted, then flushes a final checkpoint.
        """
        print(f"Starting GAN training on {self.runtime.device}")
        print(f"Dataset: {len(self.reader)} images, batch size {self.config.batch_size}")

        if self.config.num_epochs is None:
            epochs = itertools.count(self.current_epoch)
        else:
            epochs = range(self.current_epoch, self.config.num_epochs)

        handlers = self._install_signal_handlers()
        try:
            for epoch in epochs:
                epoch_losses = self.train_epoch(epoch)
                if self.stop_requested:
                    break

                self.current_epoch = epoch + 1
                print(f"Epoch {self.current_epoch} Summary: "
                      f"D: {epoch_losses['d_loss']:.4f}, G: {epoch_losses['g_loss']:.4f}")
                log_metrics(self.config.log_dir, epoch_losses['d_loss'],
                            epoch_losses['g_loss'], self.current_epoch)

                if self.current_epoch % self.config.save_every == 0:
                    self.save()
        finally:
            for signum, handler in handlers.items():
                signal.signal(signum, handler)

        if self.stop_requested or self._saved_epoch != self.current_epoch:
            self.save()
        self.metrics.close()

        log_file = os.path.join(self.config.log_dir, "training_log.txt")
        if os.path.exists(log_file):
            plot_losses(log_file, os.path.join(self.config.log_dir, "loss_plot.png"))

        print("Training interrupted." if self.stop_requested else "Training completed!")


def build_config(args: argparse.Namespace) -> TrainingConfig:
    """
    Merge defaults, an optional config file and command line overrides.
    """
    config = get_default_config()
    if args.config:
        config = load_config(args.config, config)

    overrides = {
        'dataset_path': args.dataset,
        'inputs_path': args.inputs,
        'dataset_size': args.dataset_size,
        'channels': args.channels,
        'num_epochs': args.epochs,
        'batch_size': args.batch_size,
        'learning_rate': args.lr,
        'seed': args.seed,
        'tensorboard_dir': args.tensorboard,
        'preview_path': args.preview,
        'checkpoint_dir': args.checkpoint_dir,
        'log_dir': args.log_dir,
        'device': 'cuda' if args.gpu else args.device,
    }
    config.update({key: value for key, value in overrides.items() if value is not None})

    if args.no_checkpoints:
        config['checkpoints'] = False
    if args.recover:
        config['recover'] = True
    if args.verbose:
        config['verbose'] = True

    return TrainingConfig.from_dict(config)


def main():
    """
    Main function to run GAN training.
    """
    parser = argparse.ArgumentParser(description="Train a DCGAN on a folder of images")
    parser.add_argument('--config', type=str, help='Path to config file')
    parser.add_argument('-d', '--dataset', type=str, help='Dataset cache file (created if missing)')
    parser.add_argument('-i', '--inputs', type=str, help='Directory of images used to create the dataset')
    parser.add_argument('--dataset-size', type=int, help='Number of images in the dataset')
    parser.add_argument('--channels', type=int, choices=(1, 3), help='1 for grayscale, 3 for RGB')
    parser.add_argument('-e', '--epochs', type=int, help='Number of epochs (default: until interrupted)')
    parser.add_argument('-s', '--batch-size', type=int, help='Batch size')
    parser.add_argument('-l', '--lr', type=float, help='Learning rate')
    parser.add_argument('--seed', type=int, help='Random seed')
    parser.add_argument('-b', '--tensorboard', type=str, help='TensorBoard log directory')
    parser.add_argument('-p', '--preview', type=str, help='Live preview png file')
    parser.add_argument('--checkpoint-dir', type=str, help='Checkpoint directory')
    parser.add_argument('--log-dir', type=str, help='Directory for text logs and plots')
    parser.add_argument('--no-checkpoints', action='store_true', help='Disable checkpoints')
    parser.add_argument('-r', '--recover', action='store_true', help='Resume from the last checkpoint')
    parser.add_argument('--device', type=str, choices=('auto', 'cpu', 'cuda', 'mps'), help='Device')
    parser.add_argument('--gpu', action='store_true', help='Shortcut for --device cuda')
    parser.add_argument('-v', '--verbose', action='store_true', help='Print every batch')

    args = parser.parse_args()

    try:
        config = build_config(args)
        trainer = GANTrainer(config)
        trainer.train()
    except (ConfigurationError, ResourceLeakError, CheckpointError) as e:
        print(f"\n\tError: {e}\n")
        if isinstance(e, ResourceLeakError):
            print("Terminating...")
        sys.exit(1)


if __name__ == "__main__":
    main()
