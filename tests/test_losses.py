"""Tests for the GOKU reconstruction + KL objective."""

import math

import pytest
import torch


class TestKL:
    @pytest.mark.parametrize("shape", [(1,), (4, 3), (2, 5, 7)])
    def test_zero_for_standard_normal(self, shape):
        from latentdiffeq.algorithms.lightning.losses.goku import kl_divergence

        kl = kl_divergence(torch.zeros(shape), torch.zeros(shape))
        assert kl.shape == shape
        assert torch.all(kl == 0)

    def test_closed_form(self):
        from latentdiffeq.algorithms.lightning.losses.goku import kl_divergence

        mu = torch.tensor([1.0])
        logvar = torch.tensor([math.log(2.0)])
        expected = 0.5 * (2.0 + 1.0 - 1.0 - math.log(2.0))
        assert kl_divergence(mu, logvar).item() == pytest.approx(expected)

    def test_vector_kl_sums_groups(self):
        from latentdiffeq.algorithms.lightning.losses.goku import vector_kl

        mu = (torch.ones(4, 3), torch.zeros(4, 2))
        logvar = (torch.zeros(4, 3), torch.zeros(4, 2))
        # 0.5 * mu^2 summed over 3 dims, averaged over batch
        assert vector_kl(mu, logvar).item() == pytest.approx(1.5)

    def test_vector_kl_zero(self):
        from latentdiffeq.algorithms.lightning.losses.goku import vector_kl

        zeros = (torch.zeros(8, 4), torch.zeros(8, 4))
        assert vector_kl(zeros, zeros).item() == 0.0


class TestReconstruction:
    def test_vector_mse(self):
        from latentdiffeq.algorithms.lightning.losses.mse import vector_mse

        outputs = torch.zeros(2, 3, 4)
        targets = torch.ones(2, 3, 4)
        # mean over batch and time is 1 per feature, summed over 4 features
        assert vector_mse(outputs, targets).item() == pytest.approx(4.0)

    def test_nan_is_not_masked(self):
        from latentdiffeq.algorithms.lightning.losses.mse import vector_mse

        outputs = torch.zeros(2, 3, 4)
        outputs[1] = float("nan")
        assert torch.isnan(vector_mse(outputs, torch.zeros(2, 3, 4)))


class TestGOKULoss:
    def test_components_and_forward(self):
        from latentdiffeq.algorithms.lightning.losses.goku import GOKULoss

        loss_fn = GOKULoss()
        outputs, targets = torch.zeros(2, 3, 4), torch.ones(2, 3, 4)
        mu = (torch.ones(2, 3), torch.zeros(2, 2))
        logvar = (torch.zeros(2, 3), torch.zeros(2, 2))

        comps = loss_fn.components(outputs, targets, mu=mu, logvar=logvar)
        assert set(comps) == {"recon", "kl"}
        loss = loss_fn(outputs, targets, beta=0.5, mu=mu, logvar=logvar)
        assert loss.item() == pytest.approx(comps["recon"].item() + 0.5 * comps["kl"].item())

    def test_satisfies_function_loss_protocol(self):
        from latentdiffeq.algorithms.lightning.losses.goku import GOKULoss
        from latentdiffeq.algorithms.lightning.losses.loss import FunctionLoss

        assert isinstance(GOKULoss(), FunctionLoss)
