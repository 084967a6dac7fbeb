"""End-to-end training run through the experiment entry point."""

import os

import matplotlib

matplotlib.use("Agg")

import pytest

pytest.importorskip("torchdiffeq")


def _config(tmp_path, **overrides):
    from latentdiffeq.configs import Config

    values = dict(
        system="pendulum_friction",
        renderer="projection",
        debug=True,
        epochs=1,
        n_samples=20,
        full_seq_len=12,
        seq_len=8,
        batch_size=4,
        vis_len=6,
        cuda=False,
        data_dir=str(tmp_path / "data"),
        output_dir=str(tmp_path / "outputs"),
        network=dict(hidden_dim=16, rnn_input_dim=8, rnn_output_dim=6, latent_dim=4, latent_to_diffeq_dim=16),
        trainer={"enable_progress_bar": False},
    )
    values.update(overrides)
    return Config(**values)


def test_run_training(tmp_path):
    import math

    from latentdiffeq.experiment import run_training

    results = run_training(_config(tmp_path))

    assert math.isfinite(results["best_val_loss"])
    assert results["best_epoch"] == 0
    assert os.path.exists(results["checkpoint"])
    assert "test_loss" in results["test"]
    assert (tmp_path / "outputs" / "visualization" / "fig_1.png").exists()
    assert any(name.endswith(".npz") for name in os.listdir(tmp_path / "data"))


def test_seq_len_longer_than_data(tmp_path):
    from latentdiffeq.experiment import run_training

    with pytest.raises(ValueError, match="exceeds"):
        run_training(_config(tmp_path, seq_len=20))
