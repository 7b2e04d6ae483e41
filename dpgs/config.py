import logging
from pathlib import Path
from typing import Literal, Optional, Union

import yaml
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

# Конфигурация по умолчанию поставляется внутри пакета
PACKAGE_DIR = Path(__file__).resolve().parent
DEFAULT_CONFIG_PATH = PACKAGE_DIR / "default_config.yaml"


class InferenceConfig(BaseModel):
    # Доля веса ребер, отдаваемая подзадаче дерева; остаток (1 - beta) у подзадачи вершин
    beta: float = Field(default=0.5, ge=0.0, le=1.0)
    max_subgradient_steps: int = Field(default=2, ge=0)
    loss_weight: float = 0.0
    num_workers: int = Field(default=1, ge=1)
    # None - корень выбирается свободно
    root: Optional[int] = Field(default=0, ge=0)
    unique_root: bool = False
    only_positive_edges: bool = False


class TrainingConfig(BaseModel):
    num_epochs: int = Field(default=10, ge=1)
    learning_rate: float = Field(default=1.0, gt=0.0)
    learning_rate_strategy: Literal["none", "linear", "quadratic", "square_root"] = "none"
    average_weights: bool = True
    randomize: bool = False
    seed: int = 0
    # Используются только LossAugmentedPerceptron
    loss_weight: float = 1.0
    loss_weight_increment: float = 0.0
    show_progress: bool = False
    show_report: bool = False


class DPGSConfig(BaseModel):
    inference: InferenceConfig = Field(default_factory=InferenceConfig)
    training: TrainingConfig = Field(default_factory=TrainingConfig)


def load_config(path: Union[str, Path] = DEFAULT_CONFIG_PATH) -> DPGSConfig:
    """Загружает конфигурацию из YAML. Отсутствующие секции берутся по умолчанию."""
    path = Path(path)
    with open(path, 'r', encoding='utf-8') as f:
        raw = yaml.safe_load(f) or {}
    config = DPGSConfig(**raw)
    logger.debug(f"Loaded config from {path}: {config}")
    return config
