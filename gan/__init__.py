"""
Generative Adversarial Network (GAN) training pipeline for image synthesis.

This package provides a DCGAN generator/discriminator pair, an adversarial
training loop over a folder of images, checkpointing, live metrics and
previews, and an inference-only library for generating images from a
trained generator.
"""
