# dpgs/core/interfaces.py
from abc import ABC, abstractmethod
from typing import Optional, Sequence

from dpgs.core.data_structures import DependencyInput, DependencyOutput


class ScoringOracle(ABC):
    """
    Источник весов факторов: отображает список кодов признаков в вещественный вес.
    """

    @abstractmethod
    def score(self, features: Optional[Sequence[int]]) -> float:
        """
        Возвращает сумму весов признаков или NaN, если фактор отсутствует (features is None).
        """
        pass


class BaseInference(ABC):
    """
    Интерфейс для алгоритмов вывода.
    Заполняет output на месте и возвращает отчет о выполнении.
    """

    @abstractmethod
    def inference(self, model: ScoringOracle, input_: DependencyInput, output: DependencyOutput):
        pass

    @abstractmethod
    def loss_augmented_inference(self, model: ScoringOracle, input_: DependencyInput,
                                 reference: DependencyOutput, predicted: DependencyOutput,
                                 loss_weight: Optional[float] = None):
        pass
