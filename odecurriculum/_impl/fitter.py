import logging
import torch
from .errors import CurriculumError, SimulationFailure
from .misc import _check_horizon, _check_inputs, _is_finite
from .optimizers import OPTIMIZERS
from .stages import FitResult, FitStage, StageResult

logger = logging.getLogger(__name__)


def _mse(predicted, observed, weights):
    sq = (predicted - observed) ** 2
    if weights is not None:
        sq = sq * weights
    return sq.mean()


def _sse(predicted, observed, weights):
    sq = (predicted - observed) ** 2
    if weights is not None:
        sq = sq * weights
    return sq.sum()


def _mae(predicted, observed, weights):
    err = (predicted - observed).abs()
    if weights is not None:
        err = err * weights
    return err.mean()


LOSSES = {'mse': _mse, 'sse': _sse, 'mae': _mae}


def _time_weights(sample_points, observed, time_decay):
    if time_decay == 1.0:
        return None
    weights = torch.as_tensor(time_decay, dtype=observed.dtype, device=observed.device) ** sample_points.to(observed)
    return weights.reshape(-1, *([1] * (observed.ndimension() - 1)))


def _make_loss_fn(simulate, stage, loss, time_decay):
    if callable(loss):
        def reduction(predicted, observed, weights):
            return loss(predicted, observed)
    else:
        reduction = LOSSES[loss]
    weights = _time_weights(stage.sample_points, stage.observed, time_decay)

    def loss_fn(parameters):
        predicted = simulate(parameters, stage.time_horizon, stage.sample_points)
        if predicted.shape != stage.observed.shape:
            raise ValueError('simulate returned shape {} for observations of shape {}'.format(
                tuple(predicted.shape), tuple(stage.observed.shape)))
        if not _is_finite(predicted):
            raise SimulationFailure('simulate returned non-finite values')
        return reduction(predicted, stage.observed, weights)

    return loss_fn


def uniform_checkpoints(time_horizon, num_stages):
    """Evenly spaced horizon ends; the last one is exactly the end of `time_horizon`."""
    start, end = _check_horizon(time_horizon)
    if num_stages < 1:
        raise ValueError('num_stages must be at least 1, but got {}'.format(num_stages))
    checkpoints = [start + (end - start) * (i + 1) / num_stages for i in range(num_stages - 1)]
    checkpoints.append(end)
    return checkpoints


class CurriculumFitter(object):
    """Fits over a growing sequence of time horizons, warm-starting each stage from the last.

    Fitting the full horizon directly is sensitive to the initial parameters: early errors compound over the
    trajectory and the optimizer may never recover the short-time behaviour. Each stage here only fits the
    samples with `t <= checkpoint`, and the next stage starts from its best parameters.

    Args:
        simulate: callable `(parameters, time_horizon, sample_points) -> predicted_series`, e.g. an
            `OdeintSimulator`.
        checkpoints: strictly increasing horizon ends. The last must equal the end of the time horizon.
        configs: None, one `OptimizerConfig` used for every stage, or one entry per stage. An entry may be a
            list of configs, run one after another within the stage.
        time_horizon: `(start, end)` of the full problem. Defaults to the first and last sample point.
        fractions: interpret checkpoints as fractions of the time horizon.
        loss: 'mse', 'sse', 'mae', or a callable `(predicted, observed) -> scalar`.
        time_decay: weight observations by `time_decay ** t`. Only supported with the built-in losses.
        optimizers: extra entries for the optimizer registry, keyed by algorithm name.
        on_stage_complete: optional hook `(stage_index, loss, predicted_series)` called after each stage.
        on_iteration: optional hook `(stage_index, iteration, loss)` called on each optimizer iteration.
    """

    def __init__(self, simulate, checkpoints, configs=None, time_horizon=None, fractions=False, loss='mse',
                 time_decay=1.0, optimizers=None, on_stage_complete=None, on_iteration=None):
        if not callable(loss) and loss not in LOSSES:
            raise ValueError('Invalid loss "{}". Must be a callable or one of {}'.format(
                loss, '{"' + '", "'.join(LOSSES.keys()) + '"}.'))
        if callable(loss) and time_decay != 1.0:
            raise ValueError('time_decay is only supported with the built-in losses.')
        if not time_decay > 0:
            raise ValueError('time_decay must be positive, but got {}'.format(time_decay))

        self.simulate = simulate
        self.checkpoints = list(checkpoints)
        self.configs = configs
        self.time_horizon = time_horizon
        self.fractions = fractions
        self.loss = loss
        self.time_decay = time_decay
        self.optimizers = dict(OPTIMIZERS)
        if optimizers is not None:
            self.optimizers.update(optimizers)
        self.on_stage_complete = on_stage_complete
        self.on_iteration = on_iteration

    def plan(self, t, y, parameters):
        """Validates the inputs and returns the stages that `fit` would run, without running any."""
        time_horizon, horizon_ends, num_points, configs = _check_inputs(
            t, y, parameters, self.checkpoints, self.configs, self.time_horizon, self.fractions, self.optimizers)
        start = time_horizon[0]
        return [FitStage(index, (start, end), t[:n], y[:n], chain)
                for index, (end, n, chain) in enumerate(zip(horizon_ends, num_points, configs))]

    def fit(self, t, y, parameters, cancel_token=None):
        """Runs every stage in order and returns a `FitResult`.

        Raises:
            InvalidHorizonSequence: before any stage runs, if the checkpoints are unusable.
            OptimizationFailure: if a stage's optimizer fails; later stages do not run.
            SimulationFailure: if the simulation fails during a stage.
            FitCancelled: if `cancel_token` is cancelled.
        """
        stages = self.plan(t, y, parameters)
        current = parameters.detach().clone()
        results = []

        for stage in stages:
            if cancel_token is not None:
                cancel_token.raise_if_cancelled(stage.index)
            logger.info('Stage %d/%d: horizon (%g, %g), %d sample points', stage.index + 1, len(stages),
                        stage.time_horizon[0], stage.time_horizon[1], len(stage.sample_points))
            try:
                result = self._run_stage(stage, current, cancel_token)
                predicted = None
                if self.on_stage_complete is not None:
                    with torch.no_grad():
                        predicted = self.simulate(result.parameters.clone(), stage.time_horizon,
                                                  stage.sample_points)
            except CurriculumError as exc:
                if exc.stage_index is None:
                    exc.stage_index = stage.index
                raise
            logger.info('Stage %d/%d finished: loss %g after %d iterations', stage.index + 1, len(stages),
                        result.loss, result.iterations)

            if predicted is not None:
                self.on_stage_complete(stage.index, result.loss, predicted.detach().clone())

            results.append(result)
            current = result.parameters.clone()

        return FitResult(current, tuple(results))

    def _run_stage(self, stage, parameters, cancel_token):
        loss_fn = _make_loss_fn(self.simulate, stage, self.loss, self.time_decay)
        callback = None
        if self.on_iteration is not None:
            def callback(iteration, loss):
                self.on_iteration(stage.index, iteration, loss)

        iterations = 0
        stopped_early = False
        opt_result = None
        for config in stage.optimizer_config:
            optimizer = self.optimizers[config.algorithm](
                learning_rate=config.learning_rate, max_iterations=config.max_iterations,
                allow_nonmonotonic_loss=config.allow_nonmonotonic_loss, callback=callback,
                cancel_token=cancel_token, stage_index=stage.index, **config.options)
            opt_result = optimizer.optimize(loss_fn, parameters.clone())
            parameters = opt_result.parameters.clone()
            iterations += opt_result.iterations
            stopped_early = stopped_early or opt_result.stopped_early

        return StageResult(stage.index, stage.time_horizon, len(stage.sample_points), parameters, opt_result.loss,
                           iterations, stopped_early)


def fit_curriculum(simulate, t, y, checkpoints, parameters, configs=None, *, time_horizon=None, fractions=False,
                   loss='mse', time_decay=1.0, optimizers=None, on_stage_complete=None, on_iteration=None,
                   cancel_token=None):
    """Fit `parameters` to the series `(t, y)` over a growing sequence of time horizons.

    Stage k fits only the samples with `t <= checkpoints[k]`, starting from the parameters found by stage k-1.
    The last checkpoint must equal the end of the time horizon, so the final stage fits the whole series.

    Args:
        simulate: callable `(parameters, time_horizon, sample_points) -> predicted_series`.
        t: 1-D strictly increasing Tensor of sample points.
        y: Tensor of observations whose first dimension corresponds to `t`.
        checkpoints: horizon ends, absolute unless `fractions` is set.
        parameters: 1-D Tensor of initial parameters. It is not modified.
        configs: optimizer settings; see `CurriculumFitter`.

    Returns:
        FitResult: `parameters` from the full-horizon stage, and one `StageResult` per stage.
    """
    fitter = CurriculumFitter(simulate, checkpoints, configs, time_horizon=time_horizon, fractions=fractions,
                              loss=loss, time_decay=time_decay, optimizers=optimizers,
                              on_stage_complete=on_stage_complete, on_iteration=on_iteration)
    return fitter.fit(t, y, parameters, cancel_token=cancel_token)
