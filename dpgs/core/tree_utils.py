import logging
from typing import Sequence

import networkx as nx

# Отсутствие родителя (корень дерева) / отсутствие деда в релаксированной структуре
NO_HEAD = -1

logger = logging.getLogger(__name__)


def build_tree_graph(heads: Sequence[int]) -> nx.DiGraph:
    """
    Строит ориентированный граф head -> modifier по массиву родителей.
    """
    g = nx.DiGraph()
    g.add_nodes_from(range(len(heads)))
    for modifier, head in enumerate(heads):
        if head != NO_HEAD:
            g.add_edge(int(head), modifier)
    return g


def count_roots(heads: Sequence[int]) -> int:
    return sum(1 for head in heads if head == NO_HEAD)


def is_valid_tree(heads: Sequence[int]) -> bool:
    """
    Проверяет, что heads задает лес: без петель, без циклов, хотя бы один корень.
    """
    n = len(heads)
    for modifier, head in enumerate(heads):
        if head != NO_HEAD and not 0 <= head < n:
            logger.debug(f"Head {head} of token {modifier} is out of range")
            return False
        if head == modifier:
            return False

    if n and count_roots(heads) == 0:
        return False

    return nx.is_directed_acyclic_graph(build_tree_graph(heads))
