import logging
from typing import Optional, Tuple

import networkx as nx
import numpy as np

from dpgs.core.data_structures import NO_HEAD

logger = logging.getLogger(__name__)


class MaximumArborescenceSolver:
    """
    Максимальное остовное дерево (arborescence) на ориентированном графе весов.

    weights[h][m] - вес дуги h -> m; NaN означает запрещенную дугу.
    Внутри используется виртуальный суперкорень с индексом n.
    """

    def __init__(self, root: Optional[int] = 0, unique_root: bool = False,
                 only_positive_edges: bool = False):
        self.root = root
        self.unique_root = unique_root
        self.only_positive_edges = only_positive_edges

    def solve(self, weights: np.ndarray) -> Tuple[np.ndarray, float]:
        """
        Возвращает (heads, weight): массив родителей (NO_HEAD для корней)
        и сумму исходных весов выбранных дуг.
        """
        n = weights.shape[0]
        heads = np.full(n, NO_HEAD, dtype=np.int64)
        if n < 2:
            return heads, 0.0

        if self.root is not None and not 0 <= self.root < n:
            raise ValueError(f"Root {self.root} is out of range for {n} tokens")

        g = self._build_graph(weights)
        if self.only_positive_edges:
            tree = nx.maximum_branching(g, attr="weight")
        else:
            tree = self._spanning_arborescence(g, n)

        super_root = n
        for head, modifier in tree.edges():
            if head != super_root:
                heads[modifier] = head

        weight = float(sum(weights[head, modifier] for modifier, head in enumerate(heads) if head != NO_HEAD))
        return heads, weight

    def _build_graph(self, weights: np.ndarray) -> nx.DiGraph:
        n = weights.shape[0]
        g = nx.DiGraph()
        g.add_nodes_from(range(n))

        # Порядок добавления фиксирован, поэтому разрешение равенств детерминировано
        for head in range(n):
            for modifier in range(n):
                if head == modifier or modifier == self.root:
                    continue
                w = weights[head, modifier]
                if np.isnan(w):
                    continue
                if self.only_positive_edges and w <= 0:
                    continue
                g.add_edge(head, modifier, weight=float(w))
        return g

    def _spanning_arborescence(self, g: nx.DiGraph, n: int) -> nx.DiGraph:
        super_root = n
        candidates = range(n) if self.root is None else [self.root]
        for node in candidates:
            g.add_edge(super_root, node, weight=0.0)

        if self.unique_root:
            # Штраф больше суммы модулей всех весов: у корня остается ровно один ребенок
            penalty = 1.0 + sum(abs(d["weight"]) for _, _, d in g.edges(data=True))
            penalized = super_root if self.root is None else self.root
            for _, _, data in g.out_edges(penalized, data=True):
                data["weight"] -= penalty

        reachable = nx.descendants(g, super_root) | {super_root}
        if len(reachable) < n + 1:
            unreachable = sorted(set(range(n)) - reachable)
            logger.debug(f"Tokens {unreachable} are unreachable from the root, left without head")

        sub = g.subgraph(reachable).copy()
        return nx.maximum_spanning_arborescence(sub, attr="weight")
