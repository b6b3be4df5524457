#!/usr/bin/env python3
"""
Dataset Visualization Script
Visualizes a dataset cache file to check what the GAN is trained on.
"""

import argparse
import os

import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
import torch

from gan.config import TrainingConfig, get_default_config
from gan.data import read_dataset_cache
from gan.utils import load_config, save_image_grid


def visualize_sample_images(dataset, num_samples=16, output_dir="visualize_dataset"):
    """Save a grid of the first dataset images."""
    print(f"\nVisualizing {num_samples} sample images...")

    images = dataset[:num_samples]
    save_image_grid(images, f"{output_dir}/samples.png", nrow=4)


def visualize_image_statistics(dataset, output_dir="visualize_dataset"):
    """Visualize statistics of image pixel values."""
    print(f"\nAnalyzing pixel statistics from {len(dataset)} images...")

    num_samples = dataset.size(0)
    flat_images = dataset.reshape(num_samples, -1)

    plt.figure(figsize=(15, 10))

    # 1. Mean image
    plt.subplot(2, 3, 1)
    mean_image = ((dataset.mean(dim=0) + 1) / 2).clamp(0, 1)
    plt.imshow(mean_image.permute(1, 2, 0).squeeze(), cmap='gray')
    plt.title('Mean Image')
    plt.axis('off')

    # 2. Standard deviation heatmap
    plt.subplot(2, 3, 2)
    std_heatmap = dataset.std(dim=0).mean(dim=0)
    plt.imshow(std_heatmap, cmap='plasma')
    plt.title('Pixel Standard Deviation')
    plt.colorbar()
    plt.axis('off')

    # 3. Overall pixel value distribution
    plt.subplot(2, 3, 3)
    plt.hist(flat_images.flatten().numpy(), bins=50, alpha=0.7, color='blue')
    plt.xlabel('Pixel Value')
    plt.ylabel('Frequency')
    plt.title('Overall Pixel Value Distribution')
    plt.grid(True, alpha=0.3)

    # 4. Sample mean distribution
    plt.subplot(2, 3, 4)
    plt.hist(flat_images.mean(dim=1).numpy(), bins=30, alpha=0.7, color='green')
    plt.xlabel('Sample Mean')
    plt.ylabel('Frequency')
    plt.title('Sample Mean Distribution')
    plt.grid(True, alpha=0.3)

    # 5. Sample standard deviation distribution
    plt.subplot(2, 3, 5)
    plt.hist(flat_images.std(dim=1).numpy(), bins=30, alpha=0.7, color='red')
    plt.xlabel('Sample Standard Deviation')
    plt.ylabel('Frequency')
    plt.title('Sample Std Distribution')
    plt.grid(True, alpha=0.3)

    # 6. Per channel distribution
    plt.subplot(2, 3, 6)
    colors = ['red', 'green', 'blue'] if dataset.size(1) == 3 else ['gray']
    for channel, color in enumerate(colors):
        plt.hist(dataset[:, channel].flatten().numpy(), bins=50, alpha=0.5, color=color)
    plt.xlabel('Pixel Value')
    plt.ylabel('Frequency')
    plt.title('Per Channel Distribution')
    plt.grid(True, alpha=0.3)

    plt.tight_layout()
    plt.savefig(f"{output_dir}/pixel_statistics.png", dpi=150, bbox_inches='tight')
    plt.close()

    print(f"Pixel value statistics:")
    print(f"  Overall mean: {flat_images.mean():.4f}")
    print(f"  Overall std: {flat_images.std():.4f}")
    print(f"  Overall min: {flat_images.min():.4f}")
    print(f"  Overall max: {flat_images.max():.4f}")


def main():
    """Main visualization function."""
    parser = argparse.ArgumentParser(description="Visualize a dataset cache file")
    parser.add_argument('--config', type=str, help='Path to config file')
    parser.add_argument('-d', '--dataset', type=str, help='Dataset cache file')
    parser.add_argument('--output-dir', type=str, default='visualize_dataset')
    args = parser.parse_args()

    config = get_default_config()
    if args.config:
        config = load_config(args.config, config)
    if args.dataset:
        config['dataset_path'] = args.dataset
    config = TrainingConfig.from_dict(config)

    print("=" * 60)
    print(f"Dataset Visualization: {config.dataset_path}")
    print("=" * 60)

    os.makedirs(args.output_dir, exist_ok=True)
    with torch.no_grad():
        dataset = read_dataset_cache(config.dataset_path, config)

    visualize_sample_images(dataset, num_samples=min(16, len(dataset)), output_dir=args.output_dir)
    visualize_image_statistics(dataset, output_dir=args.output_dir)

    print("\n" + "=" * 60)
    print("Visualization complete! Check the generated PNG files.")
    print("=" * 60)


if __name__ == "__main__":
    main()
