from typing import Any, Dict, Optional

from .logger import setup_logger

logger = setup_logger(__name__)


def start_aim_run(
    experiment: str, hparams: Dict[str, Any], repo: Optional[str] = None
) -> Any:
    """Open an Aim run and record the hyperparameters on it."""
    # Aim is optional, installed with the "tracking" extra
    import aim

    aim_run = aim.Run(repo=repo, experiment=experiment)
    aim_run["hparams"] = hparams
    logger.info(f"Aim run initialized. Check UI or logs at: {aim_run.repo.path}")
    return aim_run
