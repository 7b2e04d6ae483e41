import logging
from typing import Optional

import numpy as np

from dpgs.core.data_structures import NO_HEAD

logger = logging.getLogger(__name__)


class GrandparentSiblingsSolver:
    """
    Точное решение подзадачи одной вершины: выбор деда (родителя вершины)
    и двух цепочек модификаторов (слева и справа) с факторами grandparent и siblings.

    Таблицы для вершины h:
        grandparent_weights[m][g] - вес фактора (h, m, g);
        sibling_weights[m][p]     - вес фактора (h, m, p), индексы START/END:
                                    h для левой цепочки, n для правой.
    Двойственные переменные вычитаются из весов этой подзадачи.
    """

    def __init__(self, beta: float = 0.5):
        self.beta = beta

    def solve_head(self, num_tokens: int, head: int, edge_weights: np.ndarray,
                   grandparent_weights: np.ndarray, sibling_weights: np.ndarray,
                   dual_grandparent: np.ndarray, dual_modifier: np.ndarray,
                   grandparents: np.ndarray, modifiers: np.ndarray) -> float:
        """
        Записывает grandparents[head] и строку modifiers[head] и возвращает
        значение целевой функции подзадачи.
        Все буферы локальны, поэтому вызовы для разных вершин можно выполнять параллельно.
        """
        n = num_tokens
        if n < 2:
            grandparents[head] = NO_HEAD
            modifiers[head, :] = False
            return 0.0

        edge_fraction = 1.0 - self.beta
        allowed = ~np.isnan(edge_weights[head])
        dual_row = dual_modifier[head]

        accum = np.full(n + 1, np.nan)
        previous = np.full(n + 1, NO_HEAD, dtype=np.int64)

        best_weight = -np.inf
        best_grandparent = NO_HEAD
        best_previous = None

        for grandparent in range(NO_HEAD, n):
            if grandparent == NO_HEAD:
                weight = 0.0
            else:
                if grandparent == head:
                    continue
                edge = edge_weights[grandparent, head]
                if np.isnan(edge):
                    continue
                weight = edge_fraction * edge - dual_grandparent[grandparent, head]

            # Левая цепочка: модификаторы 0..head-1, START/END = head
            weight += self._best_chain(0, head, grandparent, grandparent_weights, sibling_weights,
                                       dual_row, allowed, accum, previous)
            # Правая цепочка: модификаторы head+1..n-1, START/END = n
            weight += self._best_chain(head + 1, n, grandparent, grandparent_weights, sibling_weights,
                                       dual_row, allowed, accum, previous)

            if weight > best_weight:
                best_weight = weight
                best_grandparent = grandparent
                best_previous = previous.copy()

        grandparents[head] = best_grandparent
        modifiers[head, :] = False
        if best_previous is None:
            return 0.0

        modifier = best_previous[head]
        while modifier != head:
            modifiers[head, modifier] = True
            modifier = best_previous[modifier]

        modifier = best_previous[n]
        while modifier != n:
            modifiers[head, modifier] = True
            modifier = best_previous[modifier]

        return float(best_weight)

    def solve(self, num_tokens: int, edge_weights: np.ndarray, grandparent_weights: np.ndarray,
              sibling_weights: np.ndarray, dual_grandparent: np.ndarray, dual_modifier: np.ndarray,
              grandparents: np.ndarray, modifiers: np.ndarray) -> float:
        return sum(
            self.solve_head(num_tokens, head, edge_weights, grandparent_weights[head], sibling_weights[head],
                            dual_grandparent, dual_modifier, grandparents, modifiers)
            for head in range(num_tokens)
        )

    def objective_of_parse(self, heads: np.ndarray, edge_weights: np.ndarray,
                           grandparent_weights: np.ndarray, sibling_weights: np.ndarray,
                           dual_grandparent: Optional[np.ndarray] = None,
                           dual_modifier: Optional[np.ndarray] = None) -> float:
        """Значение целевой функции подзадач вершин на согласованном дереве."""
        return tree_objective(heads, edge_weights, grandparent_weights, sibling_weights,
                              edge_fraction=1.0 - self.beta,
                              dual_grandparent=dual_grandparent, dual_modifier=dual_modifier)

    def _best_chain(self, first: int, start_end: int, grandparent: int,
                    grandparent_weights: np.ndarray, sibling_weights: np.ndarray,
                    dual_row: np.ndarray, allowed: np.ndarray,
                    accum: np.ndarray, previous: np.ndarray) -> float:
        for modifier in range(first, start_end):
            grandparent_weight = 0.0 if grandparent == NO_HEAD else grandparent_weights[modifier, grandparent]
            if not allowed[modifier] or np.isnan(grandparent_weight):
                accum[modifier] = np.nan
                previous[modifier] = NO_HEAD
                continue
            self._best_previous(first, start_end, modifier, sibling_weights[modifier], accum, previous)
            accum[modifier] += grandparent_weight - dual_row[modifier]

        self._best_previous(first, start_end, start_end, sibling_weights[start_end], accum, previous)
        if np.isnan(accum[start_end]):
            # Нет ни одной допустимой цепочки: пустая цепочка с нулевым вкладом
            accum[start_end] = 0.0
            previous[start_end] = start_end
        return accum[start_end]

    @staticmethod
    def _best_previous(first: int, start_end: int, modifier: int, sibling_row: np.ndarray,
                       accum: np.ndarray, previous: np.ndarray) -> None:
        best = sibling_row[start_end]
        best_prev = start_end

        candidates = accum[first:modifier] + sibling_row[first:modifier]
        valid = np.flatnonzero(~np.isnan(candidates))
        if valid.size:
            # argmax берет первый максимум, т.е. меньший индекс при равенстве
            idx = valid[np.argmax(candidates[valid])]
            if np.isnan(best) or candidates[idx] > best:
                best = candidates[idx]
                best_prev = first + idx

        accum[modifier] = best
        previous[modifier] = best_prev


def tree_objective(heads: np.ndarray, edge_weights: np.ndarray, grandparent_weights: np.ndarray,
                   sibling_weights: np.ndarray, edge_fraction: float = 1.0,
                   dual_grandparent: Optional[np.ndarray] = None,
                   dual_modifier: Optional[np.ndarray] = None) -> float:
    """
    Вес полного дерева: ребра (с множителем edge_fraction), grandparent и sibling факторы,
    выведенные из heads. Отсутствующие (NaN) факторы пропускаются.
    """
    n = len(heads)
    total = 0.0

    def add(value: float) -> None:
        nonlocal total
        if not np.isnan(value):
            total += value

    for head in range(n):
        grandparent = heads[head]
        if grandparent != NO_HEAD:
            if dual_grandparent is not None:
                total -= dual_grandparent[grandparent, head]
            add(edge_fraction * edge_weights[grandparent, head])

        for first, start_end in ((0, head), (head + 1, n)):
            prev = start_end
            for modifier in range(first, start_end):
                if heads[modifier] != head:
                    continue
                if grandparent != NO_HEAD:
                    add(grandparent_weights[head, modifier, grandparent])
                add(sibling_weights[head, modifier, prev])
                if dual_modifier is not None:
                    total -= dual_modifier[head, modifier]
                prev = modifier
            add(sibling_weights[head, start_end, prev])

    return float(total)
