"""Tests for the GOKU LightningModule training wrapper."""

import functools

import pytest
import torch

pytest.importorskip("torchdiffeq")

SMALL = dict(hidden_dim=16, rnn_input_dim=8, rnn_output_dim=6, latent_dim=4, latent_to_diffeq_dim=16)


@pytest.fixture
def datamodule(tmp_path):
    from latentdiffeq.data import LatentDiffEqDataModule

    dm = LatentDiffEqDataModule(
        system="pendulum_friction",
        renderer="projection",
        renderer_kwargs={"obs_dim": 6},
        n_samples=20,
        full_seq_len=10,
        batch_size=6,
        data_dir=str(tmp_path / "data"),
    )
    dm.prepare_data()
    dm.setup()
    return dm


def _make_module(datamodule=None, optimizer=None, **kwargs):
    from latentdiffeq.algorithms.lightning.goku import GOKU
    from latentdiffeq.algorithms.lightning.networks.goku_net import GOKUNetwork
    from latentdiffeq.systems import PendulumFriction

    system = PendulumFriction(method="rk4", options={"step_size": 0.05})
    network = GOKUNetwork(input_dim=6, system=system, **SMALL)
    defaults = dict(seq_len=6, epochs=8, n_cycle=2, ratio=0.5)
    defaults.update(kwargs)
    if optimizer is None:
        optimizer = functools.partial(torch.optim.AdamW, lr=1e-3, weight_decay=1e-3)
    return GOKU(
        network=network,
        optimizer=optimizer,
        datamodule=datamodule,
        **defaults,
    )


class TestGOKUModule:
    def test_setup_with_direct_network(self):
        module = _make_module()
        module.setup()
        assert module.network is not None
        assert module.loss_fn is not None
        assert len(module.annealing_schedule) == 8

    def test_beta_follows_schedule(self):
        module = _make_module()
        module.setup()
        assert module.beta_for_epoch(0) == 0.0
        assert module.beta_for_epoch(3) == 1.0
        assert module.beta_for_epoch(4) == 0.0
        # held past the end of the schedule
        assert module.beta_for_epoch(100) == module.beta_for_epoch(7)

    def test_curriculum(self):
        module = _make_module(seq_len=10, progressive_training=True, prog_training_duration=5, start_seq_len=2)
        assert module.current_seq_len == 2
        assert list(module.curriculum) == [2, 4, 6, 8, 10]

    def test_validation_loss_is_deterministic(self, datamodule):
        module = _make_module(datamodule)
        module.setup()
        first = module.validation_loss()
        second = module.validation_loss()
        assert first == second

    def test_validation_loss_without_data(self):
        module = _make_module()
        module.setup()
        assert module.validation_loss() is None

    def test_encode(self, datamodule):
        module = _make_module(datamodule)
        module.setup()
        decoded = module.encode(datamodule.val_data)
        assert decoded.z0.shape == (2, 2)
        assert decoded.theta.shape == (2, 1)
        assert not decoded.theta.requires_grad

    def test_configure_optimizers(self):
        module = _make_module()
        module.setup()
        optimizer = module.configure_optimizers()
        assert isinstance(optimizer, torch.optim.AdamW)
        assert optimizer.defaults["weight_decay"] == 1e-3

    def test_configure_optimizers_from_hydra_config(self):
        from latentdiffeq.algorithms import make_optimizer_config

        module = _make_module(optimizer=make_optimizer_config(lr=5e-4, weight_decay=0.01))
        module.setup()
        optimizer = module.configure_optimizers()
        assert isinstance(optimizer, torch.optim.AdamW)
        assert optimizer.defaults["lr"] == 5e-4
        assert tuple(optimizer.defaults["betas"]) == (0.9, 0.999)

    def test_network_from_config(self, datamodule):
        from latentdiffeq.algorithms import make_network_config
        from latentdiffeq.algorithms.lightning.goku import GOKU
        from latentdiffeq.algorithms.lightning.networks.goku_net import GOKUNetwork

        module = GOKU(
            network=make_network_config(input_dim=6, system="pendulum_friction", **SMALL),
            optimizer=functools.partial(torch.optim.AdamW, lr=1e-3),
            datamodule=datamodule,
        )
        module.setup()
        assert isinstance(module.network, GOKUNetwork)
        assert module.network.encoder.latent_dim == 4

    def test_loss_from_config(self):
        from latentdiffeq.algorithms import GOKULoss, make_loss_config

        module = _make_module(loss=make_loss_config())
        module.setup()
        assert isinstance(module.loss_fn, GOKULoss)

    def test_hyperparameters_exclude_objects(self):
        module = _make_module()
        for name in ("network", "optimizer", "loss", "datamodule"):
            assert name not in module.hparams
        assert module.hparams["seq_len"] == 6

    def test_end_to_end_training(self, datamodule, tmp_path):
        """Train with a Lightning Trainer; the best weights are written and reloadable."""
        from lightning.pytorch import Trainer

        from latentdiffeq.lightning.callbacks import BestWeightsCheckpoint, load_weights

        module = _make_module(datamodule, epochs=2)
        checkpoint = BestWeightsCheckpoint(output_dir=str(tmp_path / "out"))
        trainer = Trainer(
            max_epochs=2,
            accelerator="cpu",
            callbacks=[checkpoint],
            enable_checkpointing=False,
            enable_progress_bar=False,
            logger=False,
        )
        trainer.fit(module, datamodule=datamodule)

        assert module.last_val_loss is not None
        assert "train_loss" in trainer.callback_metrics
        assert "val_loss" in trainer.callback_metrics
        assert checkpoint.best_val_loss <= module.last_val_loss
        assert (tmp_path / "out" / "best_model_weights.pt").exists()

        saved = torch.load(checkpoint.path, weights_only=True)
        fresh = _make_module()
        fresh.setup()
        restored = load_weights(fresh.network, checkpoint.path)
        assert restored is fresh.network
        for key, value in restored.state_dict().items():
            assert torch.equal(value, saved[key])

        results = trainer.test(module, datamodule=datamodule)
        assert "test_loss" in results[0]
