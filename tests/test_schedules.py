"""Tests for annealing / curriculum schedules and time windows."""

import numpy as np
import pytest
import torch


class TestCyclicalAnnealing:
    def test_length_and_range(self):
        from latentdiffeq.utils.schedules import frange_cycle_linear

        beta = frange_cycle_linear(100, 0.0, 1.0, n_cycle=4, ratio=0.9)
        assert beta.shape == (100,)
        assert beta.min() >= 0.0
        assert beta.max() <= 1.0

    def test_restarts_at_each_cycle_boundary(self):
        from latentdiffeq.utils.schedules import frange_cycle_linear

        beta = frange_cycle_linear(100, 0.0, 1.0, n_cycle=4, ratio=0.9)
        for start in (0, 25, 50, 75):
            assert beta[start] == 0.0

    def test_ramp_is_non_decreasing_and_reaches_end(self):
        from latentdiffeq.utils.schedules import frange_cycle_linear

        beta = frange_cycle_linear(100, 0.0, 1.0, n_cycle=4, ratio=0.9)
        for c in range(4):
            cycle = beta[c * 25 : (c + 1) * 25]
            assert np.all(np.diff(cycle) >= 0)
            # ramp covers 90% of the cycle, the tail is held at the end value
            assert cycle[-1] == 1.0
            assert cycle[23] == 1.0

    def test_custom_range(self):
        from latentdiffeq.utils.schedules import frange_cycle_linear

        beta = frange_cycle_linear(40, 0.2, 0.8, n_cycle=2, ratio=0.5)
        assert beta[0] == pytest.approx(0.2)
        assert beta[20] == pytest.approx(0.2)
        assert beta[19] == pytest.approx(0.8)

    def test_invalid_cycle_count(self):
        from latentdiffeq.utils.schedules import frange_cycle_linear

        with pytest.raises(ValueError):
            frange_cycle_linear(10, n_cycle=0)


class TestProgressiveTraining:
    def test_curriculum_properties(self):
        from latentdiffeq.utils.schedules import progressive_seq_lengths, seq_len_for_epoch

        curriculum = progressive_seq_lengths(10, 50, 200)
        lengths = [seq_len_for_epoch(e, 50, curriculum) for e in range(400)]

        assert lengths[0] == 10  # first epoch
        assert all(b >= a for a, b in zip(lengths, lengths[1:]))
        # epochs are 0-indexed here: epoch 200 is index 199
        assert all(length == 50 for length in lengths[199:])

    def test_without_curriculum(self):
        from latentdiffeq.utils.schedules import seq_len_for_epoch

        assert seq_len_for_epoch(0, 50) == 50
        assert seq_len_for_epoch(1000, 50) == 50


class TestTimeWindows:
    def test_rand_time_fits(self):
        from latentdiffeq.utils.sampling import rand_time

        generator = torch.Generator().manual_seed(0)
        for _ in range(100):
            window = rand_time(20, 7, generator=generator)
            assert 0 <= window.start
            assert window.stop <= 20
            assert window.stop - window.start == 7

    def test_full_length_window(self):
        from latentdiffeq.utils.sampling import rand_time

        assert rand_time(12, 12) == slice(0, 12)

    def test_window_too_long(self):
        from latentdiffeq.utils.sampling import rand_time

        with pytest.raises(ValueError):
            rand_time(10, 11)

    def test_time_loader_crops_time_axis(self):
        from latentdiffeq.utils.sampling import time_loader

        x = torch.arange(3 * 10 * 2, dtype=torch.float32).reshape(3, 10, 2)
        cropped = time_loader(x, 4)
        assert cropped.shape == (3, 4, 2)
        # same window for every sample
        offset = int(cropped[0, 0, 0].item()) // 2
        assert torch.equal(cropped, x[:, offset : offset + 4])

    def test_time_grid(self):
        from latentdiffeq.utils.sampling import time_grid

        t = time_grid(5, 0.05)
        assert torch.allclose(t, torch.tensor([0.0, 0.05, 0.1, 0.15, 0.2]))

    def test_normalize_to_unit_segment(self):
        from latentdiffeq.utils.sampling import normalize_to_unit_segment

        x = torch.tensor([2.0, 4.0, 6.0])
        assert torch.allclose(normalize_to_unit_segment(x), torch.tensor([0.0, 0.5, 1.0]))
        assert torch.equal(normalize_to_unit_segment(torch.ones(3)), torch.zeros(3))
