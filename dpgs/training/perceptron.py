import logging
import math
import random
from dataclasses import dataclass
from typing import List, Optional, Sequence

from tqdm import tqdm

from dpgs.config import TrainingConfig
from dpgs.core.data_structures import DependencyInput, DependencyOutput
from dpgs.core.interfaces import BaseInference
from dpgs.model.linear_model import DependencyModel
from dpgs.reporting import render_training_report

logger = logging.getLogger(__name__)


@dataclass
class EpochStats:
    epoch: int
    loss: float
    num_examples: int
    num_mistakes: int
    mean_subgradient_steps: float

    @property
    def normalized_loss(self) -> float:
        return self.loss / self.num_examples if self.num_examples else 0.0


class TrainingListener:
    """
    Хуки цикла обучения. after_epoch может вернуть False, чтобы остановить обучение.
    """

    def before_training(self, trainer: "Perceptron") -> None:
        pass

    def before_epoch(self, trainer: "Perceptron", epoch: int) -> None:
        pass

    def after_epoch(self, trainer: "Perceptron", stats: EpochStats) -> bool:
        return True

    def after_training(self, trainer: "Perceptron") -> None:
        pass


def learning_rate_at(strategy: str, learning_rate: float, iteration: int) -> float:
    """Скорость обучения на итерации iteration (нумерация с 0)."""
    if strategy == "none":
        return learning_rate
    if strategy == "linear":
        return learning_rate / (iteration + 1)
    if strategy == "quadratic":
        return learning_rate / ((iteration + 1) * (learning_rate + 1))
    if strategy == "square_root":
        return learning_rate / math.sqrt(iteration + 1)
    raise ValueError(f"Unknown learning rate strategy: {strategy}")


class Perceptron:
    """
    Онлайн-обучение структурированного (усредняемого) перцептрона.
    """

    def __init__(self, inference: BaseInference, model: DependencyModel,
                 config: Optional[TrainingConfig] = None,
                 listener: Optional[TrainingListener] = None):
        self.inference = inference
        self.model = model
        self.config = config or TrainingConfig()
        self.listener = listener or TrainingListener()
        self.iteration = 0
        self.history: List[EpochStats] = []
        self._last_steps = 0

    @property
    def current_learning_rate(self) -> float:
        return learning_rate_at(self.config.learning_rate_strategy, self.config.learning_rate, self.iteration)

    def _predict(self, input_: DependencyInput, correct: DependencyOutput, predicted: DependencyOutput):
        return self.inference.inference(self.model, input_, predicted)

    def train_example(self, input_: DependencyInput, correct: DependencyOutput,
                      predicted: DependencyOutput) -> float:
        result = self._predict(input_, correct, predicted)
        # Обновление идет по дереву, которое вывод вернул как ответ
        predicted.fill_gs_structures_from_parse()
        loss = self.model.update(input_, correct, predicted, self.current_learning_rate)
        self.model.sum_updates(self.iteration)
        self.iteration += 1
        self._last_steps = result.num_steps
        return loss

    def train_one_epoch(self, inputs: Sequence[DependencyInput], outputs: Sequence[DependencyOutput],
                        epoch: int, order: List[int]) -> EpochStats:
        total_loss = 0.0
        mistakes = 0
        steps = 0
        for index in tqdm(order, desc=f"Epoch {epoch}", disable=not self.config.show_progress):
            correct = outputs[index]
            predicted = correct.empty_like()
            loss = self.train_example(inputs[index], correct, predicted)
            total_loss += loss
            steps += self._last_steps
            if loss > 0:
                mistakes += 1

        return EpochStats(
            epoch=epoch,
            loss=total_loss,
            num_examples=len(order),
            num_mistakes=mistakes,
            mean_subgradient_steps=steps / len(order) if order else 0.0,
        )

    def _after_epoch(self, stats: EpochStats) -> None:
        pass

    def train(self, inputs: Sequence[DependencyInput], outputs: Sequence[DependencyOutput]) -> List[EpochStats]:
        if len(inputs) != len(outputs):
            raise ValueError(f"Got {len(inputs)} inputs and {len(outputs)} outputs")

        rng = random.Random(self.config.seed)
        order = list(range(len(inputs)))
        self.listener.before_training(self)
        logger.info(f"Training on {len(inputs)} examples for {self.config.num_epochs} epochs")

        for epoch in range(1, self.config.num_epochs + 1):
            self.listener.before_epoch(self, epoch)
            if self.config.randomize:
                rng.shuffle(order)

            stats = self.train_one_epoch(inputs, outputs, epoch, order)
            self.history.append(stats)
            logger.info(
                f"Epoch {epoch}: loss={stats.loss:.1f} (normalized {stats.normalized_loss:.4f}), "
                f"mistakes={stats.num_mistakes}/{stats.num_examples}, "
                f"mean steps={stats.mean_subgradient_steps:.2f}"
            )
            self._after_epoch(stats)

            if not self.listener.after_epoch(self, stats):
                logger.info(f"Training stopped by listener after epoch {epoch}")
                break

        if self.config.average_weights:
            self.model.average(self.iteration)

        self.listener.after_training(self)
        if self.config.show_report:
            render_training_report(self.history)
        return self.history


class LossAugmentedPerceptron(Perceptron):
    """
    Перцептрон с выводом, дополненным функцией потерь: факторы, не совпадающие
    с эталоном, получают бонус loss_weight.
    """

    def __init__(self, inference: BaseInference, model: DependencyModel,
                 config: Optional[TrainingConfig] = None,
                 listener: Optional[TrainingListener] = None):
        super().__init__(inference, model, config, listener)
        self.loss_weight = self.config.loss_weight

    def _predict(self, input_: DependencyInput, correct: DependencyOutput, predicted: DependencyOutput):
        return self.inference.loss_augmented_inference(self.model, input_, correct, predicted, self.loss_weight)

    def _after_epoch(self, stats: EpochStats) -> None:
        if self.config.loss_weight_increment:
            self.loss_weight = max(0.0, self.loss_weight + self.config.loss_weight_increment)
            logger.info(f"Loss weight is now {self.loss_weight:.4f}")
