"""Tests for the model factory and the two training steps."""

from __future__ import annotations

import pytest
import torch

from conftest import make_config
from gan.errors import CheckpointError, ConfigurationError
from gan.model import (
    Combined, Discriminator, Generator,
    create_combined_model, create_discriminator, create_generator,
    deserialize, discriminator_batch, generator_batch, serialize,
    train_discriminator, train_generator,
)
from gan.runtime import TorchRuntime
from gan.utils import set_seed


def build_models(config):
    discriminator = create_discriminator(config)
    generator = create_generator(config)
    combined = create_combined_model(generator, discriminator, config)
    return generator, discriminator, combined


def snapshot(model: torch.nn.Module):
    return {name: p.detach().clone() for name, p in model.named_parameters()}


def changed(before, model: torch.nn.Module) -> bool:
    return any(not torch.equal(before[name], p) for name, p in model.named_parameters())


# ── Generator ────────────────────────────────────────────────────
class TestGenerator:

    @pytest.mark.parametrize("channels", [1, 3])
    def test_output_shape(self, tmp_path, runtime, channels: int) -> None:
        config = make_config(tmp_path, channels=channels)
        generator = create_generator(config)
        images = generator(runtime.uniform((5, config.latent_size)))
        assert images.shape == (5, channels, 16, 16)

    def test_output_in_tanh_range(self, config, runtime) -> None:
        generator = create_generator(config)
        with torch.no_grad():
            images = generator(runtime.uniform((32, config.latent_size)) * 100)
        assert images.min() >= -1.0
        assert images.max() <= 1.0

    def test_full_size_architecture_shapes(self) -> None:
        generator = Generator(latent_size=4, hidden_dims=(8, 4, 4, 4), out_channels=3, image_size=64)
        assert generator.initial_size == 4
        with torch.no_grad():
            assert generator(torch.zeros(1, 4)).shape == (1, 3, 64, 64)

    def test_biases_start_at_zero(self, config) -> None:
        generator = create_generator(config)
        for name, param in generator.named_parameters():
            if name.endswith('bias'):
                assert torch.count_nonzero(param) == 0

    def test_projection_has_no_bias(self, config) -> None:
        assert create_generator(config).fc.bias is None

    def test_is_not_compiled(self, config) -> None:
        assert not hasattr(create_generator(config), 'optimizer')

    def test_batch_norm_stages(self, tmp_path) -> None:
        config = make_config(tmp_path, batch_norm=True)
        generator = create_generator(config)
        assert any(isinstance(m, torch.nn.BatchNorm2d) for m in generator.modules())

    def test_even_kernel_rejected(self, tmp_path) -> None:
        with pytest.raises(ConfigurationError):
            create_generator(make_config(tmp_path, kernel_size=4))


# ── Discriminator ────────────────────────────────────────────────
class TestDiscriminator:

    @pytest.mark.parametrize("channels", [1, 3])
    def test_output_in_sigmoid_range(self, tmp_path, channels: int) -> None:
        config = make_config(tmp_path, channels=channels)
        discriminator = create_discriminator(config)
        images = torch.randn(6, channels, 16, 16) * 10
        with torch.no_grad():
            scores = discriminator(images)
        assert scores.shape == (6, 1)
        assert scores.min() >= 0.0
        assert scores.max() <= 1.0

    def test_is_compiled_with_adam(self, config) -> None:
        discriminator = create_discriminator(config)
        assert isinstance(discriminator.optimizer, torch.optim.Adam)
        group = discriminator.optimizer.param_groups[0]
        assert group['lr'] == config.learning_rate
        assert group['betas'] == (config.adam_beta1, config.adam_beta2)

    def test_dropout_stages(self, tmp_path) -> None:
        discriminator = create_discriminator(make_config(tmp_path, dropout=0.3))
        assert any(isinstance(m, torch.nn.Dropout) for m in discriminator.modules())

    def test_regularized_kernels_include_classifier(self, config) -> None:
        discriminator = create_discriminator(config)
        kernels = list(discriminator.regularized_kernels())
        assert any(k is discriminator.classifier[0].weight for k in kernels)


# ── Combined model ───────────────────────────────────────────────
class TestCombined:

    def test_optimizer_only_holds_generator_weights(self, config) -> None:
        generator, discriminator, combined = build_models(config)
        optimized = {id(p) for group in combined.optimizer.param_groups for p in group['params']}
        assert optimized == {id(p) for p in generator.parameters()}

    def test_discriminator_trainable_after_construction(self, config) -> None:
        _, discriminator, _ = build_models(config)
        assert all(p.requires_grad for p in discriminator.parameters())

    def test_shares_weights(self, config) -> None:
        generator, discriminator, combined = build_models(config)
        assert combined.generator is generator
        assert combined.discriminator is discriminator

    def test_output_in_sigmoid_range(self, config, runtime) -> None:
        _, _, combined = build_models(config)
        with torch.no_grad():
            scores = combined(runtime.uniform((4, config.latent_size)))
        assert scores.shape == (4, 1)
        assert ((scores >= 0) & (scores <= 1)).all()


# ── Training steps ───────────────────────────────────────────────
class TestTrainingSteps:

    @pytest.mark.parametrize("batch_size", [1, 2, 10])
    def test_discriminator_batch(self, config, runtime, dataset, batch_size: int) -> None:
        generator = create_generator(config)
        x, y = discriminator_batch(generator, dataset[:batch_size], runtime, config)
        assert x.shape == (2 * batch_size, 3, 16, 16)
        assert torch.equal(x[:batch_size], dataset[:batch_size])
        assert y.shape == (2 * batch_size, 1)
        assert torch.all(y[:batch_size] == config.soft_one)
        assert torch.all(y[batch_size:] == 0)

    @pytest.mark.parametrize("batch_size", [1, 2, 10])
    def test_generator_batch(self, config, runtime, batch_size: int) -> None:
        z, y = generator_batch(batch_size, runtime, config)
        assert z.shape == (2 * batch_size, config.latent_size)
        assert y.shape == (2 * batch_size, 1)
        assert torch.all(y == config.soft_one)

    def test_discriminator_step_only_moves_discriminator(self, config, runtime, dataset) -> None:
        generator, discriminator, _ = build_models(config)
        g_before, d_before = snapshot(generator), snapshot(discriminator)
        loss = train_discriminator(generator, discriminator, dataset[:10], runtime, config)
        assert loss > 0
        assert changed(d_before, discriminator)
        assert not changed(g_before, generator)

    def test_generator_step_only_moves_generator(self, config, runtime) -> None:
        generator, discriminator, combined = build_models(config)
        g_before, d_before = snapshot(generator), snapshot(discriminator)
        loss = train_generator(combined, 10, runtime, config)
        assert loss > 0
        assert changed(g_before, generator)
        assert not changed(d_before, discriminator)

    def test_discriminator_still_trains_after_generator_step(self, config, runtime, dataset) -> None:
        generator, discriminator, combined = build_models(config)
        train_generator(combined, 10, runtime, config)
        d_before = snapshot(discriminator)
        train_discriminator(generator, discriminator, dataset[:10], runtime, config)
        assert changed(d_before, discriminator)

    def test_seeded_steps_are_deterministic(self, tmp_path, dataset) -> None:
        def run():
            config = make_config(tmp_path, seed=123)
            set_seed(123)
            runtime = TorchRuntime(torch.device('cpu'), seed=123)
            generator, discriminator, combined = build_models(config)
            g_before, d_before = snapshot(generator), snapshot(discriminator)
            train_discriminator(generator, discriminator, dataset[:10], runtime, config)
            train_generator(combined, 10, runtime, config)
            g_delta = {k: p.detach() - g_before[k] for k, p in generator.named_parameters()}
            d_delta = {k: p.detach() - d_before[k] for k, p in discriminator.named_parameters()}
            return g_delta, d_delta

        first, second = run(), run()
        for a, b in zip(first, second):
            assert a.keys() == b.keys()
            for name in a:
                assert torch.equal(a[name], b[name]), name


# ── Serialization ────────────────────────────────────────────────
class TestSerialization:

    def test_generator_round_trip(self, config, runtime, tmp_path) -> None:
        generator = create_generator(config)
        generator.eval()
        path = str(tmp_path / "generator.pth")
        serialize(generator, path)
        restored = deserialize(path)

        assert isinstance(restored, Generator)
        z = runtime.uniform((3, config.latent_size))
        with torch.no_grad():
            assert torch.equal(generator(z), restored(z))

    def test_discriminator_round_trip(self, config, tmp_path) -> None:
        discriminator = create_discriminator(config)
        path = str(tmp_path / "discriminator.pth")
        serialize(discriminator, path)
        assert isinstance(deserialize(path), Discriminator)

    def test_not_a_bundle(self, tmp_path) -> None:
        path = str(tmp_path / "other.pth")
        torch.save({'weights': torch.zeros(2)}, path)
        with pytest.raises(CheckpointError):
            deserialize(path)

    def test_missing_file(self, tmp_path) -> None:
        with pytest.raises(CheckpointError):
            deserialize(str(tmp_path / "missing.pth"))

    def test_truncated_file(self, config, tmp_path) -> None:
        path = tmp_path / "generator.pth"
        serialize(create_generator(config), str(path))
        data = path.read_bytes()
        path.write_bytes(data[:len(data) // 2])
        with pytest.raises(CheckpointError):
            deserialize(str(path))

    def test_garbage_file(self, tmp_path) -> None:
        path = tmp_path / "generator.pth"
        path.write_bytes(b"\x00not a model\x01" * 8)
        with pytest.raises(CheckpointError):
            deserialize(str(path))

    def test_weights_do_not_match_architecture(self, config, tmp_path) -> None:
        path = str(tmp_path / "generator.pth")
        generator = create_generator(config)
        torch.save({
            'class': 'Generator',
            'architecture': dict(generator.architecture, latent_size=config.latent_size + 1),
            'state_dict': generator.state_dict(),
        }, path)
        with pytest.raises(CheckpointError):
            deserialize(path)


class TestBatchNorm:

    @staticmethod
    def statistics(model: torch.nn.Module):
        return {name: b.clone() for name, b in model.named_buffers()}

    def test_generator_step_keeps_discriminator_statistics(self, tmp_path, runtime) -> None:
        config = make_config(tmp_path, batch_norm=True)
        generator, discriminator, combined = build_models(config)
        before = self.statistics(discriminator)
        assert before

        train_generator(combined, 4, runtime, config)
        after = self.statistics(discriminator)
        for name in before:
            assert torch.equal(before[name], after[name]), name

    def test_discriminator_step_updates_statistics(self, tmp_path, runtime, dataset) -> None:
        config = make_config(tmp_path, batch_norm=True)
        generator, discriminator, combined = build_models(config)
        train_generator(combined, 4, runtime, config)
        before = self.statistics(discriminator)

        train_discriminator(generator, discriminator, dataset[:4], runtime, config)
        after = self.statistics(discriminator)
        assert any(not torch.equal(before[name], after[name]) for name in before)
