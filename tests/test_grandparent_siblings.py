import unittest

import numpy as np

from dpgs.core.data_structures import NO_HEAD
from dpgs.inference.dual_decomposition import DualDecompositionInference
from dpgs.solvers.arborescence import MaximumArborescenceSolver
from dpgs.solvers.grandparent_siblings import GrandparentSiblingsSolver, tree_objective
from factories import build_full_input, random_model


def empty_tables(n):
    edge = np.full((n, n), np.nan)
    grandparent = np.full((n, n, n), np.nan)
    sibling = np.full((n, n + 1, n + 1), np.nan)
    return edge, grandparent, sibling


class TestGrandparentSiblingsSolver(unittest.TestCase):
    def setUp(self):
        self.solver = GrandparentSiblingsSolver(beta=0.5)

    def _solve(self, n, head, edge, grandparent, sibling, dual_modifier=None):
        grandparents = np.full(n, 99, dtype=np.int64)
        modifiers = np.zeros((n, n), dtype=bool)
        dual_grandparent = np.zeros((n, n))
        if dual_modifier is None:
            dual_modifier = np.zeros((n, n))
        value = self.solver.solve_head(n, head, edge, grandparent[head], sibling[head],
                                       dual_grandparent, dual_modifier, grandparents, modifiers)
        return value, grandparents, modifiers

    def test_single_token(self):
        edge, grandparent, sibling = empty_tables(1)
        value, grandparents, modifiers = self._solve(1, 0, edge, grandparent, sibling)
        self.assertEqual(value, 0.0)
        self.assertEqual(grandparents[0], NO_HEAD)
        self.assertFalse(modifiers.any())

    def _root_chain_tables(self):
        n = 3
        edge, grandparent, sibling = empty_tables(n)
        edge[0, 1] = edge[0, 2] = 1.0
        # Правая цепочка вершины 0: START/END = 3
        sibling[0, 0, 0] = 0.0
        sibling[0, 1, 3] = 1.0
        sibling[0, 2, 1] = 2.0
        sibling[0, 2, 3] = 0.0
        sibling[0, 3, 2] = 0.5
        sibling[0, 3, 1] = 0.0
        sibling[0, 3, 3] = 0.0
        return n, edge, grandparent, sibling

    def test_best_sibling_chain(self):
        n, edge, grandparent, sibling = self._root_chain_tables()
        value, grandparents, modifiers = self._solve(n, 0, edge, grandparent, sibling)
        self.assertAlmostEqual(value, 3.5)
        self.assertEqual(grandparents[0], NO_HEAD)
        self.assertEqual(modifiers[0].tolist(), [False, True, True])

    def test_dual_is_subtracted(self):
        n, edge, grandparent, sibling = self._root_chain_tables()
        dual_modifier = np.zeros((n, n))
        dual_modifier[0, 2] = 10.0
        value, _, modifiers = self._solve(n, 0, edge, grandparent, sibling, dual_modifier)
        self.assertAlmostEqual(value, 1.0)
        self.assertEqual(modifiers[0].tolist(), [False, True, False])

    def test_grandparent_choice(self):
        n = 3
        edge, grandparent, sibling = empty_tables(n)
        edge[0, 1] = 4.0
        edge[2, 1] = 1.0
        edge[1, 2] = 0.0
        grandparent[1, 2, 0] = 0.0
        sibling[1, 1, 1] = 0.0
        sibling[1, 2, 3] = 0.0
        sibling[1, 3, 2] = 0.0
        sibling[1, 3, 3] = 0.0
        value, grandparents, modifiers = self._solve(n, 1, edge, grandparent, sibling)
        self.assertEqual(grandparents[1], 0)
        self.assertAlmostEqual(value, 2.0)
        self.assertFalse(modifiers[1].any())

    def test_missing_grandparent_factor_skips_modifier(self):
        n = 3
        edge, grandparent, sibling = empty_tables(n)
        edge[0, 1] = 4.0
        edge[1, 2] = 0.0
        sibling[1, 1, 1] = 0.0
        sibling[1, 2, 3] = 5.0
        sibling[1, 3, 2] = 0.0
        sibling[1, 3, 3] = 0.0
        # grandparent[1, 2, 0] отсутствует: при деде 0 модификатор 2 недоступен
        value, grandparents, modifiers = self._solve(n, 1, edge, grandparent, sibling)
        # Дед NO_HEAD с модификатором 2 дает 5, дед 0 без модификатора дает 2
        self.assertEqual(grandparents[1], NO_HEAD)
        self.assertTrue(modifiers[1, 2])
        self.assertAlmostEqual(value, 5.0)

    def test_head_values_bound_any_tree(self):
        input_ = build_full_input(5)
        model = random_model(input_, seed=11)
        inference = DualDecompositionInference()
        tables = inference.build_factor_tables(model, input_)
        n = input_.size

        grandparents = np.full(n, NO_HEAD, dtype=np.int64)
        modifiers = np.zeros((n, n), dtype=bool)
        total = self.solver.solve(n, tables.edge, tables.grandparent, tables.sibling,
                                  tables.dual_grandparent, tables.dual_modifier, grandparents, modifiers)

        heads, _ = MaximumArborescenceSolver().solve(tables.edge)
        bound = self.solver.objective_of_parse(heads, tables.edge, tables.grandparent, tables.sibling)
        self.assertGreaterEqual(total + 1e-9, bound)


class TestTreeObjective(unittest.TestCase):
    def test_counts_every_factor_of_the_tree(self):
        n = 3
        edge = np.ones((n, n))
        grandparent = np.ones((n, n, n))
        sibling = np.ones((n, n + 1, n + 1))
        heads = np.array([NO_HEAD, 0, 1])
        # 2 ребра + 1 grandparent + 8 sibling (включая пустые цепочки)
        self.assertAlmostEqual(tree_objective(heads, edge, grandparent, sibling), 11.0)
        self.assertAlmostEqual(tree_objective(heads, edge, grandparent, sibling, edge_fraction=0.5), 10.0)

    def test_missing_factors_are_skipped(self):
        n = 3
        edge = np.ones((n, n))
        grandparent = np.full((n, n, n), np.nan)
        sibling = np.full((n, n + 1, n + 1), np.nan)
        heads = np.array([NO_HEAD, 0, 1])
        self.assertAlmostEqual(tree_objective(heads, edge, grandparent, sibling), 2.0)


if __name__ == '__main__':
    unittest.main()
