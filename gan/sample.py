"""
Generate a grid of images from a trained generator bundle.
"""

import argparse
import os
import sys

import torch

from gan.errors import GANError
from gan.library import GANLibrary
from gan.runtime import create_runtime
from gan.utils import save_image_grid


def main():
    parser = argparse.ArgumentParser(description="Sample images from a trained GAN generator")
    parser.add_argument('--model', type=str, required=True, help='Generator bundle (generator.pth)')
    parser.add_argument('--num-samples', type=int, default=16, help='Number of images')
    parser.add_argument('--nrow', type=int, default=4, help='Images per grid row')
    parser.add_argument('--output', type=str, default='samples/samples.png', help='Output png')
    parser.add_argument('--seed', type=int, help='Random seed')
    parser.add_argument('--device', type=str, default='auto', choices=('auto', 'cpu', 'cuda', 'mps'))

    args = parser.parse_args()

    try:
        library = GANLibrary(cache_path=args.model)
        library.load(create_runtime(args.device, args.seed))
        images = library.generate(args.num_samples)
    except GANError as e:
        print(f"\n\tError: {e}\n")
        sys.exit(1)

    # back to (N, C, H, W) in [-1, 1]
    batch = torch.stack([torch.from_numpy(image) for image in images]).permute(0, 3, 1, 2)
    batch = batch.float() / 255 * 2 - 1

    os.makedirs(os.path.dirname(os.path.abspath(args.output)), exist_ok=True)
    save_image_grid(batch, args.output, nrow=args.nrow)
    print(f"Saved {len(images)} samples to {args.output}")


if __name__ == "__main__":
    main()
