import collections
from .errors import FitCancelled


class OptimizerConfig(object):
    """Settings for one optimizer run.

    Args:
        algorithm: key into the optimizer registry, e.g. 'adam', 'lbfgs' or 'bfgs'.
        learning_rate: step size. Ignored by the scipy-backed algorithms.
        max_iterations: upper bound on optimizer iterations.
        allow_nonmonotonic_loss: if False, the run stops the first time the loss increases.
            If None, the algorithm's own default is used (True for the stochastic gradient
            methods, False for the line-search ones).
        **options: extra keyword options forwarded to the optimizer, e.g. `tol`,
            `require_convergence`, `weight_decay` or `gtol`.
    """

    def __init__(self, algorithm='adam', learning_rate=1e-2, max_iterations=300, allow_nonmonotonic_loss=None,
                 **options):
        if max_iterations < 1:
            raise ValueError('max_iterations must be at least 1, but got {}'.format(max_iterations))
        if learning_rate is not None and learning_rate <= 0:
            raise ValueError('learning_rate must be positive, but got {}'.format(learning_rate))
        self.algorithm = algorithm
        self.learning_rate = learning_rate
        self.max_iterations = int(max_iterations)
        self.allow_nonmonotonic_loss = allow_nonmonotonic_loss
        self.options = options

    def replace(self, **changes):
        kwargs = dict(algorithm=self.algorithm, learning_rate=self.learning_rate,
                      max_iterations=self.max_iterations, allow_nonmonotonic_loss=self.allow_nonmonotonic_loss)
        kwargs.update(self.options)
        kwargs.update(changes)
        return OptimizerConfig(**kwargs)

    def __repr__(self):
        return ('OptimizerConfig(algorithm={!r}, learning_rate={!r}, max_iterations={!r}, '
                'allow_nonmonotonic_loss={!r}, options={!r})'.format(self.algorithm, self.learning_rate,
                                                                     self.max_iterations,
                                                                     self.allow_nonmonotonic_loss, self.options))


# optimizer_config is a tuple of OptimizerConfig, run in order.
FitStage = collections.namedtuple('FitStage', 'index, time_horizon, sample_points, observed, optimizer_config')

OptimizeResult = collections.namedtuple('OptimizeResult',
                                        'parameters, loss, iterations, converged, stopped_early, message')

StageResult = collections.namedtuple('StageResult',
                                     'index, time_horizon, num_points, parameters, loss, iterations, stopped_early')


class FitResult(collections.namedtuple('FitResult', 'parameters, stages')):

    @property
    def loss(self):
        return self.stages[-1].loss


class CancellationToken(object):
    """Cooperative cancellation flag, checked before each stage and on each optimizer iteration."""

    def __init__(self):
        self._cancelled = False

    def cancel(self):
        self._cancelled = True

    @property
    def cancelled(self):
        return self._cancelled

    def raise_if_cancelled(self, stage_index=None):
        if self._cancelled:
            raise FitCancelled('fit was cancelled', stage_index=stage_index)
