"""
Loss functions and targets for adversarial training.

The discriminator is trained on a batch holding real images followed by
the same number of generated images. Real images are labelled with a soft
one (slightly below 1.0) so the discriminator does not become
overconfident; generated images are labelled 0. The generator is trained
through the combined model against soft-one labels only.
"""

import torch
import torch.nn as nn


def discriminator_targets(batch_size: int, soft_one: float, device=None) -> torch.Tensor:
    """
    Build labels for a discriminator batch of ``2 * batch_size`` samples.

    Args:
        batch_size: Number of real images (and of generated images)
        soft_one: Label value for real images
        device: Device to allocate the labels on

    Returns:
        Tensor of shape (2 * batch_size, 1): ``batch_size`` soft ones then ``batch_size`` zeros
    """
    real_labels = torch.full((batch_size, 1), soft_one, device=device)
    fake_labels = torch.zeros(batch_size, 1, device=device)
    return torch.cat([real_labels, fake_labels], dim=0)


def generator_targets(num_samples: int, soft_one: float, device=None) -> torch.Tensor:
    """
    Build the "trick" labels for a generator batch.

    Args:
        num_samples: Number of generated images
        soft_one: Label value the generator wants the discriminator to output

    Returns:
        Tensor of shape (num_samples, 1) filled with ``soft_one``
    """
    return torch.full((num_samples, 1), soft_one, device=device)


class GANLoss(nn.Module):
    """
    Binary cross entropy with an L2 penalty on convolution and dense kernels.

    Args:
        l2_scale: Coefficient of the kernel penalty
    """

    def __init__(self, l2_scale: float = 1e-4):
        super().__init__()
        self.l2_scale = l2_scale
        self.bce_loss = nn.BCELoss()

    def regularization(self, model: nn.Module) -> torch.Tensor:
        """
        Sum of ``l2_scale * ||W||^2`` over the regularized kernels of ``model``.

        Args:
            model: Model exposing ``regularized_kernels()``

        Returns:
            Scalar penalty
        """
        penalty = None
        for kernel in model.regularized_kernels():
            term = kernel.pow(2).sum()
            penalty = term if penalty is None else penalty + term
        if penalty is None:
            return torch.zeros(())
        return self.l2_scale * penalty

    def forward(self, model: nn.Module, predictions: torch.Tensor, targets: torch.Tensor) -> torch.Tensor:
        """
        Compute the regularized loss.

        Args:
            model: Model that produced ``predictions``
            predictions: Realness probabilities, shape (N, 1)
            targets: Labels, shape (N, 1)

        Returns:
            Scalar loss
        """
        return self.bce_loss(predictions, targets) + self.regularization(model)
