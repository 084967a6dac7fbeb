import logging
from typing import Any, Dict, List, Optional

import lightning
import wandb
from lightning import Callback, Trainer
from lightning.pytorch.loggers import WandbLogger
from omegaconf import DictConfig, OmegaConf

from latentdiffeq.algorithms import GOKU, make_loss_config, make_network_config, make_optimizer_config
from latentdiffeq.data import LatentDiffEqDataModule
from latentdiffeq.lightning.callbacks import BestWeightsCheckpoint, VisualizeReconstruction
from latentdiffeq.utils.backend import resolve_accelerator
from latentdiffeq.utils.utils import check_or_make_dirs, setup_logging

logger = logging.getLogger(__name__)


def instantiate_datamodule(cfg: DictConfig) -> LatentDiffEqDataModule:
    check_or_make_dirs(cfg.data_dir)
    logger.info(f"Data directory ensured at: {cfg.data_dir}")
    return LatentDiffEqDataModule(
        system=cfg.system,
        system_kwargs=OmegaConf.to_container(cfg.system_kwargs, resolve=True),
        renderer=cfg.renderer,
        n_samples=cfg.n_samples,
        full_seq_len=cfg.full_seq_len,
        dt=cfg.dt,
        batch_size=cfg.batch_size,
        val_split=cfg.val_split,
        data_dir=cfg.data_dir,
        random_state=cfg.seed,
        regenerate=cfg.regenerate_data,
    )


def instantiate_algorithm(cfg: DictConfig, datamodule: LatentDiffEqDataModule) -> GOKU:
    """Build the GOKU module; the network itself is instantiated in ``setup``."""
    if cfg.seq_len > cfg.full_seq_len:
        raise ValueError(f"seq_len ({cfg.seq_len}) exceeds the generated length ({cfg.full_seq_len})")
    network_cfg = make_network_config(
        input_dim=datamodule.input_dim,
        system=cfg.system,
        system_kwargs=OmegaConf.to_container(cfg.system_kwargs, resolve=True),
        max_workers=cfg.ensemble_workers,
        **OmegaConf.to_container(cfg.network, resolve=True),
    )
    return GOKU(
        network=network_cfg,
        optimizer=make_optimizer_config(cfg.lr, cfg.weight_decay),
        loss=make_loss_config(),
        datamodule=datamodule,
        init_seed=cfg.seed,
        dt=cfg.dt,
        variational=cfg.variational,
        epochs=cfg.epochs,
        start_beta=cfg.start_beta,
        end_beta=cfg.end_beta,
        n_cycle=cfg.n_cycle,
        ratio=cfg.ratio,
        seq_len=cfg.seq_len,
        progressive_training=cfg.progressive_training,
        prog_training_duration=cfg.prog_training_duration,
        start_seq_len=cfg.start_seq_len,
    )


def instantiate_callbacks(cfg: DictConfig) -> List[Callback]:
    callbacks: List[Callback] = [BestWeightsCheckpoint(output_dir=cfg.output_dir)]
    if cfg.vis_len > 0:
        callbacks.append(
            VisualizeReconstruction(
                output_dir=cfg.output_dir,
                vis_len=cfg.vis_len,
                save_figure=cfg.save_figure,
                seed=cfg.seed,
            )
        )
    return callbacks


def instantiate_trainer(
    cfg: DictConfig,
    lightning_callbacks: Optional[List] = None,
    loggers: Optional[List] = None,
) -> Trainer:
    """
    Build the Trainer from the run options, letting ``cfg.trainer``
    override any default.
    """
    trainer_kwargs = {
        "max_epochs": cfg.epochs,
        "accelerator": resolve_accelerator(cfg.cuda),
        "devices": 1,
        "default_root_dir": cfg.output_dir,
        "enable_checkpointing": False,
        "num_sanity_val_steps": 0,
    }
    trainer_kwargs.update(OmegaConf.to_container(cfg.trainer, resolve=True))

    # remove hydra meta-fields we don't want to forward
    trainer_kwargs.pop("_target_", None)
    trainer_kwargs.pop("callbacks", None)
    trainer_kwargs.pop("logger", None)

    trainer_kwargs["callbacks"] = lightning_callbacks or []
    trainer_kwargs["logger"] = loggers if loggers else False

    return Trainer(**trainer_kwargs)


def run_training(cfg: DictConfig) -> Dict[str, Any]:
    """
    Execute a GOKU training run.

    Generates or loads the dataset, trains with per-step validation and
    best-weight checkpointing, then evaluates the held-out set.

    Args:
        cfg: The Hydra configuration (a ``Config`` record)

    Returns:
        A dictionary with keys: best_val_loss, best_epoch, checkpoint, test
    """
    if not isinstance(cfg, DictConfig):
        cfg = OmegaConf.structured(cfg)
    OmegaConf.set_readonly(cfg, True)

    setup_logging(debug=cfg.debug, log_level=cfg.log_level)
    logger.info("Final Config:\n" + OmegaConf.to_yaml(cfg))

    with wandb.init(
        project=cfg.project,
        name=cfg.name,
        config=OmegaConf.to_container(cfg, resolve=True),
        mode="disabled" if cfg.debug else "online",
    ) as run:
        lightning.seed_everything(cfg.seed, workers=True)

        # --- Data instantiation ---
        datamodule = instantiate_datamodule(cfg)
        datamodule.prepare_data()
        datamodule.setup()

        algorithm = instantiate_algorithm(cfg, datamodule)
        callbacks = instantiate_callbacks(cfg)
        loggers = None if cfg.debug else [WandbLogger(experiment=run)]
        trainer = instantiate_trainer(cfg, lightning_callbacks=callbacks, loggers=loggers)

        logger.info("Running training...")
        trainer.fit(algorithm, datamodule=datamodule)

        logger.info("Running model evaluation.")
        test_results = trainer.test(model=algorithm, datamodule=datamodule)

        checkpoint = callbacks[0]
        results = {
            "best_val_loss": checkpoint.best_val_loss,
            "best_epoch": checkpoint.best_epoch,
            "checkpoint": checkpoint.path if checkpoint.best_epoch is not None else None,
            "test": test_results[0] if test_results else {},
        }
        logger.info(f"Experiment complete. Best validation loss: {checkpoint.best_val_loss}")

    if wandb.run:
        wandb.finish()
    return results
