"""Tests for the GOKU-net encoder, sampler, decoder and full network."""

import pytest
import torch

pytest.importorskip("torchdiffeq")

SMALL = dict(hidden_dim=16, rnn_input_dim=8, rnn_output_dim=6, latent_dim=4, latent_to_diffeq_dim=16)


def _fast_pendulum():
    from latentdiffeq.systems import Pendulum

    return Pendulum(sensitivity="direct", method="rk4", options={"step_size": 0.05})


def _make_network(input_dim=8, **kwargs):
    from latentdiffeq.algorithms.lightning.networks.goku_net import GOKUNetwork

    torch.manual_seed(0)
    return GOKUNetwork(input_dim=input_dim, system=_fast_pendulum(), **{**SMALL, **kwargs})


class TestSampler:
    def test_shape_matches_moments(self):
        from latentdiffeq.algorithms.lightning.networks.goku_net import LatentPair, sample

        mu = LatentPair(torch.zeros(5, 3), torch.zeros(5, 2))
        logvar = LatentPair(torch.zeros(5, 3), torch.zeros(5, 2))
        draw = sample(mu, logvar)
        assert draw.z0.shape == (5, 3)
        assert draw.theta.shape == (5, 2)

    def test_mean_converges_to_mu(self):
        from latentdiffeq.algorithms.lightning.networks.goku_net import reparameterize

        generator = torch.Generator().manual_seed(0)
        mu = torch.tensor([[1.0, -2.0, 0.5]]).expand(20000, -1)
        logvar = torch.full_like(mu, -1.0)
        draws = reparameterize(mu, logvar, generator)
        assert torch.allclose(draws.mean(0), mu[0], atol=0.05)
        assert torch.allclose(draws.var(0), torch.exp(logvar[0]), atol=0.05)

    def test_seeded_draws_are_reproducible(self):
        from latentdiffeq.algorithms.lightning.networks.goku_net import reparameterize

        mu, logvar = torch.zeros(3, 4), torch.zeros(3, 4)
        a = reparameterize(mu, logvar, torch.Generator().manual_seed(1))
        b = reparameterize(mu, logvar, torch.Generator().manual_seed(1))
        assert torch.equal(a, b)

    def test_shape_mismatch(self):
        from latentdiffeq.algorithms.lightning.networks.goku_net import reparameterize

        with pytest.raises(ValueError):
            reparameterize(torch.zeros(2, 3), torch.zeros(2, 4))


class TestEncoder:
    def test_moment_shapes(self):
        from latentdiffeq.algorithms.lightning.networks.goku_net import Encoder

        encoder = Encoder(input_dim=10, hidden_dim=16, rnn_input_dim=8, rnn_output_dim=6, latent_dim=4)
        mu, logvar = encoder(torch.rand(3, 7, 10))
        for group in (*mu, *logvar):
            assert group.shape == (3, 4)

    def test_recurrent_state_is_reset(self):
        from latentdiffeq.algorithms.lightning.networks.goku_net import Encoder

        encoder = Encoder(input_dim=10, hidden_dim=16, rnn_input_dim=8, rnn_output_dim=6, latent_dim=4)
        x = torch.rand(3, 7, 10)
        first, _ = encoder(x)
        assert encoder.pe_z0.state is None
        assert encoder.pe_theta_forward.state is None
        assert encoder.pe_theta_backward.state is None

        # a different batch in between must not leak into the next call
        encoder(torch.rand(5, 4, 10))
        second, _ = encoder(x)
        assert torch.equal(first.z0, second.z0)
        assert torch.equal(first.theta, second.theta)

    def test_wrong_feature_size(self):
        from latentdiffeq.algorithms.lightning.networks.goku_net import Encoder

        encoder = Encoder(input_dim=10)
        with pytest.raises(ValueError):
            encoder(torch.rand(2, 5, 11))


class TestDecoder:
    def test_round_trip_against_ground_truth(self):
        """Decoding ground-truth (z0, theta) reproduces the ground-truth latent trajectory."""
        from latentdiffeq.algorithms.lightning.networks.goku_net import Decoder, LatentPair
        from latentdiffeq.data.generators import generate_dataset
        from latentdiffeq.data.rendering import ProjectionRenderer
        from latentdiffeq.systems import Pendulum
        from latentdiffeq.utils.sampling import time_grid

        system = Pendulum(sensitivity="direct")
        dataset = generate_dataset(
            system, 6, 20, 0.05, ProjectionRenderer(obs_dim=8), torch.Generator().manual_seed(0)
        )
        decoder = Decoder(8, system, latent_dim=4, latent_to_diffeq_dim=16, hidden_dim=16)
        with torch.no_grad():
            z = decoder.diffeq_layer(LatentPair(dataset.u0s, dataset.params), time_grid(20, 0.05))
        assert torch.allclose(z, dataset.latent, atol=1e-2)

    def test_reconstructor_dimension_mismatch(self):
        import torch.nn as nn

        from latentdiffeq.algorithms.lightning.networks.goku_net import Decoder

        with pytest.raises(ValueError, match="reconstructor"):
            Decoder(8, _fast_pendulum(), latent_dim=4, reconstructor=nn.Linear(5, 8))

    def test_parameter_projection_mismatch(self):
        import torch.nn as nn

        from latentdiffeq.algorithms.lightning.networks.goku_net import Decoder

        with pytest.raises(ValueError, match="latent_out_theta"):
            Decoder(8, _fast_pendulum(), latent_dim=4, latent_out_theta=nn.Linear(4, 3))

    def test_latent_dim_mismatch(self):
        from latentdiffeq.algorithms.lightning.networks.goku_net import Decoder, Encoder, GOKUNetwork

        system = _fast_pendulum()
        with pytest.raises(ValueError, match="latent_dim"):
            GOKUNetwork(
                input_dim=8,
                system=system,
                encoder=Encoder(8, latent_dim=4),
                decoder=Decoder(8, system, latent_dim=6),
            )


class TestGOKUNetwork:
    def test_forward_shapes(self):
        net = _make_network()
        x = torch.rand(3, 10, 8)
        t = torch.arange(10) * 0.05
        (x_hat, z_hat, decoded), mu, logvar = net(x, t)
        assert x_hat.shape == (3, 10, 8)
        assert z_hat.shape == (3, 10, 2)
        assert decoded.z0.shape == (3, 2)
        assert decoded.theta.shape == (3, 1)
        assert (decoded.theta > 0).all()  # softplus
        assert mu.z0.shape == logvar.z0.shape == (3, 4)

    def test_variational_passes_differ(self):
        net = _make_network()
        x = torch.rand(2, 6, 8)
        t = torch.arange(6) * 0.05
        (x_a, _, _), _, _ = net(x, t, variational=True)
        (x_b, _, _), _, _ = net(x, t, variational=True)
        assert not torch.equal(x_a, x_b)

    def test_deterministic_passes_are_identical(self):
        net = _make_network()
        x = torch.rand(2, 6, 8)
        t = torch.arange(6) * 0.05
        (x_a, z_a, _), _, _ = net(x, t, variational=False)
        (x_b, z_b, _), _, _ = net(x, t, variational=False)
        assert torch.equal(x_a, x_b)
        assert torch.equal(z_a, z_b)

    def test_time_grid_mismatch(self):
        net = _make_network()
        with pytest.raises(ValueError):
            net(torch.rand(2, 6, 8), torch.arange(5) * 0.05)

    def test_backward_reaches_encoder(self):
        net = _make_network()
        x = torch.rand(2, 6, 8)
        (x_hat, _, _), _, _ = net(x, torch.arange(6) * 0.05)
        ((x_hat - x) ** 2).mean().backward()
        grad = net.encoder.mu_z0.weight.grad
        assert grad is not None and grad.abs().sum() > 0

    def test_system_by_name(self):
        from latentdiffeq.algorithms.lightning.networks.goku_net import GOKUNetwork

        net = GOKUNetwork(input_dim=8, system="van_der_pol", system_kwargs={"k": 2, "seed": 0}, **SMALL)
        assert net.decoder.latent_out_theta[-2].out_features == 8

    def test_infer(self):
        net = _make_network()
        decoded = net.infer(torch.rand(4, 6, 8))
        assert decoded.z0.shape == (4, 2)
        assert decoded.theta.shape == (4, 1)
