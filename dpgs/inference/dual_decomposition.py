import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import nullcontext
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

import numpy as np

from dpgs.config import InferenceConfig
from dpgs.core.data_structures import NO_HEAD, DependencyInput, DependencyOutput
from dpgs.core.exceptions import MalformedInputError
from dpgs.core.interfaces import BaseInference, ScoringOracle
from dpgs.core.tree_utils import is_valid_tree
from dpgs.solvers.arborescence import MaximumArborescenceSolver
from dpgs.solvers.grandparent_siblings import GrandparentSiblingsSolver, tree_objective

logger = logging.getLogger(__name__)


@dataclass
class FactorTables:
    """Плотные таблицы весов одного предложения и двойственные переменные."""
    edge: np.ndarray  # n x n
    grandparent: np.ndarray  # n x n x n, [h, m, g]
    sibling: np.ndarray  # n x (n+1) x (n+1), [h, m, prev]
    dual_grandparent: np.ndarray  # n x n
    dual_modifier: np.ndarray  # n x n

    @property
    def num_tokens(self) -> int:
        return self.edge.shape[0]


@dataclass
class InferenceResult:
    num_steps: int
    converged: bool
    dual_objective: float
    best_weight: float
    initial_tree_weight: float
    step_scale: float
    num_dual_increments: int
    best_weight_history: List[float] = field(default_factory=list)


class DualDecompositionInference(BaseInference):
    """
    Приближенный вывод второго порядка (grandparents + siblings) через
    лагранжеву релаксацию: дерево (arborescence) и независимые подзадачи вершин
    согласуются субградиентным методом.
    """

    def __init__(self, config: Optional[InferenceConfig] = None):
        self.config = config or InferenceConfig()
        self.arborescence_solver = MaximumArborescenceSolver(
            root=self.config.root,
            unique_root=self.config.unique_root,
            only_positive_edges=self.config.only_positive_edges,
        )
        self.gs_solver = GrandparentSiblingsSolver(beta=self.config.beta)

        self.num_predictions = 0
        self.num_subgradient_steps = 0
        self._stats_lock = threading.Lock()

    @property
    def beta(self) -> float:
        return self.config.beta

    def set_beta(self, beta: float) -> None:
        if not 0.0 <= beta <= 1.0:
            raise ValueError(f"beta must be in [0, 1], got {beta}")
        self.config = self.config.model_copy(update={"beta": beta})
        self.gs_solver.beta = beta

    def set_max_subgradient_steps(self, steps: int) -> None:
        if steps < 0:
            raise ValueError(f"max_subgradient_steps must be non-negative, got {steps}")
        self.config = self.config.model_copy(update={"max_subgradient_steps": steps})

    @property
    def average_steps_per_prediction(self) -> float:
        if self.num_predictions == 0:
            return 0.0
        return self.num_subgradient_steps / self.num_predictions

    def inference(self, model: ScoringOracle, input_: DependencyInput,
                  output: DependencyOutput) -> InferenceResult:
        self._check_output(input_, output)
        tables = self.build_factor_tables(model, input_)
        return self._subgradient_method(tables, output, input_.example_id)

    def loss_augmented_inference(self, model: ScoringOracle, input_: DependencyInput,
                                 reference: DependencyOutput, predicted: DependencyOutput,
                                 loss_weight: Optional[float] = None) -> InferenceResult:
        if loss_weight is None:
            loss_weight = self.config.loss_weight
        self._check_output(input_, reference)
        self._check_output(input_, predicted)
        tables = self.build_factor_tables(model, input_, reference, loss_weight)
        return self._subgradient_method(tables, predicted, input_.example_id)

    def build_factor_tables(self, model: ScoringOracle, input_: DependencyInput,
                            reference: Optional[DependencyOutput] = None,
                            loss_weight: float = 0.0) -> FactorTables:
        """
        Веса факторов из модели. NaN - фактор отсутствует.
        С эталоном и ненулевым loss_weight к фактору (h, m, g) добавляется
        loss_weight, если в эталоне родитель m не равен h.
        """
        n = input_.size
        edge = np.full((n, n), np.nan)
        grandparent = np.full((n, n, n), np.nan)
        sibling = np.full((n, n + 1, n + 1), np.nan)

        for (head, modifier), codes in input_.edges.items():
            edge[head, modifier] = model.score(codes)

        augment = reference is not None and loss_weight != 0.0
        for (head, modifier, gp), codes in input_.grandparents.items():
            weight = model.score(codes)
            if augment and reference.heads[modifier] != head:
                weight += loss_weight
            grandparent[head, modifier, gp] = weight

        for (head, modifier, previous), codes in input_.siblings.items():
            sibling[head, modifier, previous] = model.score(codes)

        return FactorTables(
            edge=edge,
            grandparent=grandparent,
            sibling=sibling,
            dual_grandparent=np.zeros((n, n)),
            dual_modifier=np.zeros((n, n)),
        )

    def fill_graph(self, tables: FactorTables) -> np.ndarray:
        # NaN в edge сохраняется в сумме: запрещенная дуга остается запрещенной
        return tables.dual_grandparent + tables.dual_modifier + self.beta * tables.edge

    def true_objective(self, tables: FactorTables, heads: np.ndarray) -> float:
        return tree_objective(heads, tables.edge, tables.grandparent, tables.sibling)

    def _check_output(self, input_: DependencyInput, output: DependencyOutput) -> None:
        if output.size != input_.size:
            raise MalformedInputError(
                f"Output has {output.size} tokens, input has {input_.size}", input_.example_id)

    def _solve_heads(self, heads_to_solve: Iterable[int], tables: FactorTables,
                     output: DependencyOutput, head_values: np.ndarray, executor) -> None:
        n = tables.num_tokens

        def solve(head: int):
            value = self.gs_solver.solve_head(
                n, head, tables.edge, tables.grandparent[head], tables.sibling[head],
                tables.dual_grandparent, tables.dual_modifier,
                output.grandparents, output.modifiers,
            )
            return head, value

        heads_to_solve = list(heads_to_solve)
        results = executor.map(solve, heads_to_solve) if executor else map(solve, heads_to_solve)
        for head, value in results:
            head_values[head] = value

    def _update_duals(self, tables: FactorTables, output: DependencyOutput, step_size: float) -> np.ndarray:
        """
        Один шаг субградиента. Возвращает маску вершин, чьи подзадачи нужно пересчитать.
        """
        n = output.size
        branch = np.zeros((n, n), dtype=bool)
        selected_grandparent = np.zeros((n, n), dtype=bool)
        for token in range(n):
            if output.heads[token] != NO_HEAD:
                branch[output.heads[token], token] = True
            if output.grandparents[token] != NO_HEAD:
                # grandparents[m] == h: подзадача m выбрала h своим родителем
                selected_grandparent[output.grandparents[token], token] = True

        grandparent_diff = selected_grandparent != branch
        modifier_diff = output.modifiers != branch

        tables.dual_grandparent[grandparent_diff & branch] -= step_size
        tables.dual_grandparent[grandparent_diff & ~branch] += step_size
        tables.dual_modifier[modifier_diff & branch] -= step_size
        tables.dual_modifier[modifier_diff & ~branch] += step_size

        return grandparent_diff.any(axis=0) | modifier_diff.any(axis=1)

    def _executor(self):
        if self.config.num_workers > 1:
            return ThreadPoolExecutor(max_workers=self.config.num_workers)
        return nullcontext(None)

    def _subgradient_method(self, tables: FactorTables, output: DependencyOutput,
                            example_id: Optional[str]) -> InferenceResult:
        n = tables.num_tokens
        head_values = np.zeros(n)

        with self._executor() as executor:
            graph = self.fill_graph(tables)
            heads, tree_weight = self.arborescence_solver.solve(graph)
            output.heads[:] = heads
            self._solve_heads(range(n), tables, output, head_values, executor)

            initial_tree_weight = tree_weight
            dual_objective = tree_weight + float(head_values.sum())
            best_weight = self.true_objective(tables, output.heads)
            best_heads = output.heads.copy()
            history = [best_weight]

            step_scale = dual_objective - best_weight
            # Не только нулевой, но и отрицательный масштаб заменяется на 1: отрицательный
            # возможен, когда дерево использует факторы, недоступные подзадачам вершин
            if step_scale <= 0:
                step_scale = 1.0
            logger.debug(f"Example {example_id}: step scale {step_scale:.4f}, initial weight {best_weight:.4f}")

            num_dual_increments = 0
            previous_dual = None
            converged = False
            step = 0
            while step < self.config.max_subgradient_steps:
                step_size = step_scale / (1 + num_dual_increments)
                changed = self._update_duals(tables, output, step_size)
                if not changed.any():
                    converged = True
                    logger.debug(f"Example {example_id}: optimum found at step {step}")
                    break

                graph = self.fill_graph(tables)
                heads, tree_weight = self.arborescence_solver.solve(graph)
                output.heads[:] = heads
                weight = self.true_objective(tables, output.heads)
                if weight > best_weight:
                    best_weight = weight
                    best_heads = output.heads.copy()
                history.append(best_weight)

                self._solve_heads(np.flatnonzero(changed), tables, output, head_values, executor)
                dual_objective = tree_weight + float(head_values.sum())
                if previous_dual is not None and dual_objective > previous_dual:
                    num_dual_increments += 1
                previous_dual = dual_objective
                step += 1

        if not converged:
            logger.debug(f"Example {example_id}: stopped after {step} steps without agreement")

        output.heads[:] = best_heads
        if not is_valid_tree(output.heads):
            logger.warning(f"Example {example_id}: inference produced an invalid tree {output.heads.tolist()}")

        with self._stats_lock:
            self.num_predictions += 1
            self.num_subgradient_steps += step

        return InferenceResult(
            num_steps=step,
            converged=converged,
            dual_objective=dual_objective,
            best_weight=best_weight,
            initial_tree_weight=initial_tree_weight,
            step_scale=step_scale,
            num_dual_increments=num_dual_increments,
            best_weight_history=history,
        )
