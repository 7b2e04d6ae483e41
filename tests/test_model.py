import math
import unittest

from dpgs.core.data_structures import NO_HEAD, DependencyOutput
from dpgs.core.exceptions import MalformedInputError
from dpgs.model.linear_model import DependencyModel
from dpgs.model.parameters import AveragedParameter
from factories import build_full_input


def weights_snapshot(model):
    return {code: p.weight for code, p in model.parameters.items()}


class TestAveragedParameter(unittest.TestCase):
    def test_average_over_iterations(self):
        parameter = AveragedParameter()
        parameter.update(2.0)
        parameter.sum(0)
        parameter.update(1.0)
        parameter.sum(3)
        parameter.average(5)
        # Веса по итерациям: 2, 2, 2, 3, 3
        self.assertAlmostEqual(parameter.weight, 12.0 / 5)

    def test_preset_weight_survives_averaging(self):
        parameter = AveragedParameter()
        parameter.set(1.5)
        parameter.average(4)
        self.assertAlmostEqual(parameter.weight, 1.5)

    def test_second_average_keeps_weight(self):
        parameter = AveragedParameter()
        parameter.update(1.0)
        parameter.sum(0)
        parameter.average(3)
        self.assertAlmostEqual(parameter.weight, 1.0)
        # Еще три итерации без обновлений
        parameter.average(6)
        self.assertAlmostEqual(parameter.weight, 1.0)

    def test_second_average_after_new_update(self):
        parameter = AveragedParameter()
        parameter.update(2.0)
        parameter.sum(0)
        parameter.average(2)
        parameter.update(2.0)
        parameter.sum(2)
        parameter.average(4)
        # Веса по итерациям: 2, 2, 4, 4
        self.assertAlmostEqual(parameter.weight, 3.0)

    def test_update_is_visible_immediately(self):
        parameter = AveragedParameter()
        parameter.update(0.5)
        self.assertEqual(parameter.weight, 0.5)


class TestDependencyModel(unittest.TestCase):
    def setUp(self):
        self.model = DependencyModel()

    def test_score_of_missing_factor_is_nan(self):
        self.assertTrue(math.isnan(self.model.score(None)))

    def test_unknown_codes_score_zero_and_are_not_created(self):
        self.assertEqual(self.model.score((1, 2, 3)), 0.0)
        self.assertEqual(self.model.num_parameters, 0)

    def test_score_sums_weights(self):
        self.model.set_weight(1, 0.5)
        self.model.set_weight(2, -2.0)
        self.assertAlmostEqual(self.model.score((1, 2, 1)), -1.0)

    def test_identical_outputs_give_no_update(self):
        input_ = build_full_input(4)
        correct = DependencyOutput.from_heads([NO_HEAD, 0, 1, 1])
        loss = self.model.update(input_, correct, correct.copy(), 1.0)
        self.assertEqual(loss, 0.0)
        self.assertTrue(all(w == 0.0 for w in weights_snapshot(self.model).values()))

    def test_grandparent_mismatch_is_antisymmetric(self):
        input_ = build_full_input(4)
        correct = DependencyOutput.from_heads([NO_HEAD, 0, 1, 1])
        predicted = correct.copy()
        # Подзадача вершины 2 выбрала родителем 0 вместо 1
        predicted.grandparents[2] = 0

        loss = self.model.update(input_, correct, predicted, 0.5)
        self.assertEqual(loss, 1.0)

        changed = {code: w for code, w in weights_snapshot(self.model).items() if w != 0.0}
        (correct_code,) = input_.edge_features(1, 2)
        (predicted_code,) = input_.edge_features(0, 2)
        self.assertEqual(changed, {correct_code: 0.5, predicted_code: -0.5})

    def test_missed_modifier_updates_siblings(self):
        input_ = build_full_input(3)
        correct = DependencyOutput.from_heads([NO_HEAD, 0, 0])
        predicted = correct.copy()
        predicted.modifiers[0, 2] = False

        loss = self.model.update(input_, correct, predicted, 1.0)
        self.assertEqual(loss, 3.0)

        changed = {code: w for code, w in weights_snapshot(self.model).items() if w != 0.0}
        expected = {
            input_.sibling_features(0, 2, 1)[0]: 1.0,
            input_.sibling_features(0, 3, 2)[0]: 1.0,
            input_.sibling_features(0, 3, 1)[0]: -1.0,
        }
        self.assertEqual(changed, expected)

    def test_update_size_mismatch(self):
        input_ = build_full_input(3, example_id="bad-size")
        correct = DependencyOutput.from_heads([NO_HEAD, 0, 0])
        with self.assertRaises(MalformedInputError):
            self.model.update(input_, correct, DependencyOutput(4), 1.0)

    def test_sum_updates_and_average(self):
        input_ = build_full_input(4)
        correct = DependencyOutput.from_heads([NO_HEAD, 0, 1, 1])
        predicted = correct.copy()
        predicted.grandparents[2] = 0

        self.model.update(input_, correct, predicted, 1.0)
        self.model.sum_updates(0)
        self.model.sum_updates(1)
        self.model.average(2)

        (correct_code,) = input_.edge_features(1, 2)
        self.assertAlmostEqual(self.model.get_weight(correct_code), 1.0)

    def test_copy_is_independent(self):
        self.model.set_weight(5, 2.0)
        other = self.model.copy()
        other.set_weight(5, -1.0)
        self.assertEqual(self.model.get_weight(5), 2.0)


if __name__ == '__main__':
    unittest.main()
