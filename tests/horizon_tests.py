import unittest
import torch
import odecurriculum

from problems import RecordingSimulator, RecordingOptimizer


def _series(npts=30, t_end=5.0):
    t = torch.linspace(0.0, t_end, npts, dtype=torch.float64)
    return t, 2.0 * t


class TestCheckpointValidation(unittest.TestCase):

    def setUp(self):
        RecordingOptimizer.reset()
        self.config = odecurriculum.OptimizerConfig(algorithm='record')
        self.optimizers = {'record': RecordingOptimizer}

    def _fit(self, checkpoints, **kwargs):
        simulate = RecordingSimulator()
        t, y = _series()
        fitter = odecurriculum.CurriculumFitter(simulate, checkpoints, self.config, optimizers=self.optimizers,
                                                **kwargs)
        return simulate, fitter.fit(t, y, torch.zeros(1, dtype=torch.float64))

    def test_invalid_sequences(self):
        for checkpoints in ([3.0, 1.5, 5.0], [1.5, 1.5, 5.0], [1.5, 3.0], [1.5, 3.0, 6.0], [], [0.0, 5.0],
                            [-1.0, 5.0]):
            with self.subTest(checkpoints=checkpoints):
                simulate = RecordingSimulator()
                t, y = _series()
                fitter = odecurriculum.CurriculumFitter(simulate, checkpoints, self.config,
                                                        optimizers=self.optimizers)
                with self.assertRaises(odecurriculum.InvalidHorizonSequence):
                    fitter.fit(t, y, torch.zeros(1, dtype=torch.float64))
                self.assertEqual(simulate.calls, [])
                self.assertEqual(RecordingOptimizer.invocations, [])

    def test_invalid_sequence_is_value_error(self):
        with self.assertRaises(ValueError):
            self._fit([3.0, 1.5, 5.0])

    def test_too_few_points(self):
        # Only t=0 lies within the first horizon.
        with self.assertRaises(odecurriculum.InvalidHorizonSequence) as cm:
            self._fit([0.1, 5.0])
        self.assertEqual(cm.exception.stage_index, 0)
        self.assertEqual(RecordingOptimizer.invocations, [])

    def test_example_point_counts(self):
        simulate, result = self._fit([1.5, 3.0, 5.0])
        self.assertEqual([stage.num_points for stage in result.stages], [9, 18, 30])
        self.assertEqual([stage.time_horizon for stage in result.stages], [(0.0, 1.5), (0.0, 3.0), (0.0, 5.0)])

    def test_fractions(self):
        _, absolute = self._fit([1.5, 3.0, 5.0])
        RecordingOptimizer.reset()
        _, relative = self._fit([0.3, 0.6, 1.0], fractions=True)
        self.assertEqual([stage.num_points for stage in relative.stages],
                         [stage.num_points for stage in absolute.stages])
        self.assertEqual(relative.stages[-1].time_horizon, (0.0, 5.0))

    def test_single_stage(self):
        simulate, result = self._fit([5.0])
        self.assertEqual(len(result.stages), 1)
        self.assertEqual(result.stages[0].num_points, 30)
        self.assertTrue(torch.equal(result.parameters, result.stages[0].parameters))

    def test_explicit_time_horizon(self):
        t, y = _series()
        fitter = odecurriculum.CurriculumFitter(RecordingSimulator(), [2.0, 6.0], self.config,
                                                time_horizon=(0.0, 6.0), optimizers=self.optimizers)
        stages = fitter.plan(t, y, torch.zeros(1, dtype=torch.float64))
        self.assertEqual(stages[-1].time_horizon, (0.0, 6.0))
        self.assertEqual(len(stages[-1].sample_points), 30)

        fitter = odecurriculum.CurriculumFitter(RecordingSimulator(), [2.0, 4.0], self.config,
                                                time_horizon=(0.0, 4.0), optimizers=self.optimizers)
        with self.assertRaises(ValueError):
            fitter.plan(t, y, torch.zeros(1, dtype=torch.float64))

    def test_sample_points_are_nested_prefixes(self):
        t, y = _series()
        fitter = odecurriculum.CurriculumFitter(RecordingSimulator(), [0.5, 1.0, 2.5, 4.0, 5.0], self.config,
                                                optimizers=self.optimizers)
        stages = fitter.plan(t, y, torch.zeros(1, dtype=torch.float64))
        for prev, next_ in zip(stages[:-1], stages[1:]):
            with self.subTest(stage=next_.index):
                self.assertLess(len(prev.sample_points), len(next_.sample_points))
                self.assertTrue(torch.equal(prev.sample_points, next_.sample_points[:len(prev.sample_points)]))
                self.assertTrue(torch.equal(prev.observed, next_.observed[:len(prev.observed)]))
                self.assertLessEqual(prev.time_horizon[1], next_.time_horizon[1])
        for stage in stages:
            self.assertTrue((stage.sample_points <= stage.time_horizon[1]).all())


class TestInputChecks(unittest.TestCase):

    def test_bad_inputs(self):
        t, y = _series()
        params = torch.zeros(1, dtype=torch.float64)
        cases = {
            'decreasing t': (t.flip(0), y, params, ValueError),
            'integer t': (torch.arange(30), y, params, TypeError),
            'mismatched y': (t, y[:-1], params, ValueError),
            '2-D parameters': (t, y, params.reshape(1, 1), ValueError),
        }
        for name, (t_, y_, p_, exc) in cases.items():
            with self.subTest(case=name):
                fitter = odecurriculum.CurriculumFitter(RecordingSimulator(), [1.0], fractions=True)
                with self.assertRaises(exc):
                    fitter.plan(t_, y_, p_)

    def test_unknown_algorithm(self):
        t, y = _series()
        fitter = odecurriculum.CurriculumFitter(RecordingSimulator(), [5.0],
                                                odecurriculum.OptimizerConfig(algorithm='newton'))
        with self.assertRaises(ValueError):
            fitter.plan(t, y, torch.zeros(1, dtype=torch.float64))

    def test_wrong_number_of_configs(self):
        t, y = _series()
        config = odecurriculum.OptimizerConfig()
        fitter = odecurriculum.CurriculumFitter(RecordingSimulator(), [2.0, 5.0], [config])
        with self.assertRaises(ValueError):
            fitter.plan(t, y, torch.zeros(1, dtype=torch.float64))

    def test_unknown_loss(self):
        with self.assertRaises(ValueError):
            odecurriculum.CurriculumFitter(RecordingSimulator(), [5.0], loss='huber')


class TestUniformCheckpoints(unittest.TestCase):

    def test_uniform(self):
        self.assertEqual(odecurriculum.uniform_checkpoints((0.0, 5.0), 1), [5.0])
        checkpoints = odecurriculum.uniform_checkpoints((1.0, 5.0), 4)
        self.assertEqual(len(checkpoints), 4)
        self.assertEqual(checkpoints[-1], 5.0)
        for expected, actual in zip([2.0, 3.0, 4.0], checkpoints[:-1]):
            self.assertAlmostEqual(expected, actual)

    def test_invalid(self):
        with self.assertRaises(ValueError):
            odecurriculum.uniform_checkpoints((0.0, 5.0), 0)
        with self.assertRaises(ValueError):
            odecurriculum.uniform_checkpoints((5.0, 0.0), 3)


if __name__ == '__main__':
    unittest.main()
