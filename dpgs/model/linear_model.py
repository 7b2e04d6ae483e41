import logging
import threading
from typing import Dict, Optional, Sequence

import numpy as np

from dpgs.core.data_structures import NO_HEAD, DependencyInput, DependencyOutput
from dpgs.core.exceptions import MalformedInputError
from dpgs.core.interfaces import ScoringOracle
from dpgs.model.parameters import AveragedParameter

logger = logging.getLogger(__name__)


class DependencyModel(ScoringOracle):
    """
    Линейная модель над разреженными кодами признаков.

    Вес фактора равен сумме весов его признаков. Параметры создаются только при
    обновлении; при оценке неизвестный признак дает 0.
    """

    def __init__(self):
        self.parameters: Dict[int, AveragedParameter] = {}
        self._updated: Dict[int, AveragedParameter] = {}
        self._lock = threading.Lock()

    @property
    def num_parameters(self) -> int:
        return len(self.parameters)

    def get_weight(self, code: int) -> float:
        parameter = self.parameters.get(code)
        return parameter.weight if parameter is not None else 0.0

    def set_weight(self, code: int, value: float) -> None:
        self._get_or_create(code).set(value)

    def _get_or_create(self, code: int) -> AveragedParameter:
        parameter = self.parameters.get(code)
        if parameter is None:
            parameter = AveragedParameter()
            self.parameters[code] = parameter
        return parameter

    def score(self, features: Optional[Sequence[int]]) -> float:
        if features is None:
            return np.nan
        return float(sum(self.get_weight(code) for code in features))

    def _update_factor(self, features: Optional[Sequence[int]], value: float) -> None:
        if features is None:
            return
        for code in features:
            parameter = self._get_or_create(code)
            parameter.update(value)
            self._updated[code] = parameter

    def update(self, input_: DependencyInput, correct: DependencyOutput,
               predicted: DependencyOutput, learning_rate: float) -> float:
        """
        Перцептронное обновление: факторы эталона получают +learning_rate,
        факторы предсказания -learning_rate; совпадающие не меняются.
        Предсказание сравнивается по структурам grandparents/modifiers.
        Возвращает структурную ошибку.
        """
        n = input_.size
        if correct.size != n or predicted.size != n:
            raise MalformedInputError(
                f"Output sizes {correct.size}/{predicted.size} do not match input size {n}",
                input_.example_id)

        loss = 0.0
        with self._lock:
            for head in range(n):
                correct_gp = int(correct.heads[head])
                predicted_gp = int(predicted.grandparents[head])

                # Родитель вершины head (дед ее модификаторов)
                if correct_gp != predicted_gp:
                    loss += 1.0
                    if predicted_gp != NO_HEAD:
                        self._update_factor(input_.edge_features(predicted_gp, head), -learning_rate)
                    if correct_gp != NO_HEAD:
                        self._update_factor(input_.edge_features(correct_gp, head), learning_rate)

                correct_prev = head
                predicted_prev = head
                for modifier in range(n + 1):
                    # END левой цепочки (modifier == head) и правой (modifier == n)
                    special = modifier == head or modifier == n
                    is_correct = special or correct.heads[modifier] == head
                    is_predicted = special or bool(predicted.modifiers[head, modifier])
                    if not is_correct and not is_predicted:
                        continue

                    if is_correct != is_predicted:
                        loss += 2.0
                        if is_correct:
                            self._update_factor(
                                input_.sibling_features(head, modifier, correct_prev), learning_rate)
                            if correct_gp != NO_HEAD:
                                self._update_factor(
                                    input_.grandparent_features(head, modifier, correct_gp), learning_rate)
                        else:
                            self._update_factor(
                                input_.sibling_features(head, modifier, predicted_prev), -learning_rate)
                            if predicted_gp != NO_HEAD:
                                self._update_factor(
                                    input_.grandparent_features(head, modifier, predicted_gp), -learning_rate)
                    else:
                        if correct_prev != predicted_prev:
                            loss += 1.0
                            self._update_factor(
                                input_.sibling_features(head, modifier, correct_prev), learning_rate)
                            self._update_factor(
                                input_.sibling_features(head, modifier, predicted_prev), -learning_rate)
                        if not special and correct_gp != predicted_gp:
                            loss += 1.0
                            if correct_gp != NO_HEAD:
                                self._update_factor(
                                    input_.grandparent_features(head, modifier, correct_gp), learning_rate)
                            if predicted_gp != NO_HEAD:
                                self._update_factor(
                                    input_.grandparent_features(head, modifier, predicted_gp), -learning_rate)

                    # После END левой цепочки начинается правая со START = n
                    next_prev = n if modifier == head else modifier
                    if is_correct:
                        correct_prev = next_prev
                    if is_predicted:
                        predicted_prev = next_prev

        return loss

    def sum_updates(self, iteration: int) -> None:
        with self._lock:
            for parameter in self._updated.values():
                parameter.sum(iteration)
            self._updated.clear()

    def average(self, num_iterations: int) -> None:
        if num_iterations <= 0:
            logger.warning("No iterations to average over, weights left unchanged")
            return
        with self._lock:
            for parameter in self.parameters.values():
                parameter.average(num_iterations)
            self._updated.clear()
        logger.info(f"Averaged {self.num_parameters} parameters over {num_iterations} iterations")

    def copy(self) -> "DependencyModel":
        other = DependencyModel()
        for code, parameter in self.parameters.items():
            other.set_weight(code, parameter.weight)
        return other
