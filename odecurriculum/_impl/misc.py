import math
import warnings
import torch
from .errors import InvalidHorizonSequence
from .stages import OptimizerConfig

# Relative slack when comparing horizons, so that e.g. 0.3 * 5.0 still admits the sample at t=1.5.
_HORIZON_RTOL = 1e-9


def _handle_unused_kwargs(obj, unused_kwargs):
    if len(unused_kwargs) > 0:
        warnings.warn('{}: Unexpected arguments {}'.format(obj.__class__.__name__, unused_kwargs))


def _assert_floating(name, t):
    if not torch.is_floating_point(t):
        raise TypeError('`{}` must be a floating point Tensor but is a {}'.format(name, t.type()))


def _check_timelike(name, timelike):
    if not isinstance(timelike, torch.Tensor):
        raise TypeError('{} must be a torch.Tensor'.format(name))
    _assert_floating(name, timelike)
    if timelike.ndimension() != 1:
        raise ValueError('{} must be one dimensional'.format(name))
    if not (timelike[1:] > timelike[:-1]).all():
        raise ValueError('{} must be strictly increasing'.format(name))


def _is_finite(tensor):
    return bool(torch.isfinite(tensor).all())


def _slack(value):
    return _HORIZON_RTOL * max(1.0, abs(value))


def _num_points_within(t, horizon_end):
    # t is strictly increasing, so the points inside the horizon are always a prefix.
    return int((t <= horizon_end + _slack(horizon_end)).sum())


def _check_horizon(time_horizon):
    try:
        start, end = time_horizon
    except (TypeError, ValueError):
        raise ValueError('time_horizon must be a (start, end) pair, but got {!r}'.format(time_horizon))
    start, end = float(start), float(end)
    if not end > start:
        raise ValueError('time_horizon must satisfy start < end, but got ({}, {})'.format(start, end))
    return start, end


def _check_checkpoints(checkpoints, time_horizon, fractions=False):
    """Validates checkpoints and returns them as absolute horizon ends.

    The last checkpoint is snapped to the horizon end once it has been checked to match it.
    """
    start, end = time_horizon
    checkpoints = [float(c) for c in checkpoints]
    if len(checkpoints) == 0:
        raise InvalidHorizonSequence('at least one checkpoint is required')
    if fractions:
        checkpoints = [start + c * (end - start) for c in checkpoints]
    for prev, next_ in zip(checkpoints[:-1], checkpoints[1:]):
        if not next_ > prev:
            raise InvalidHorizonSequence('checkpoints must be strictly increasing, but got {}'.format(checkpoints))
    if not checkpoints[0] > start:
        raise InvalidHorizonSequence('checkpoints must lie after the horizon start {}, '
                                     'but the first is {}'.format(start, checkpoints[0]))
    if not math.isclose(checkpoints[-1], end, rel_tol=_HORIZON_RTOL, abs_tol=_HORIZON_RTOL):
        raise InvalidHorizonSequence('the last checkpoint must equal the horizon end {}, '
                                     'but got {}'.format(end, checkpoints[-1]))
    checkpoints[-1] = end
    return checkpoints


def _check_configs(configs, num_stages):
    """Normalises per-stage optimizer configs into one tuple of OptimizerConfig per stage.

    Accepts None (defaults everywhere), a single OptimizerConfig (broadcast), or a sequence with one entry
    per stage where each entry is an OptimizerConfig or a chain (list/tuple) of them.
    """
    if configs is None:
        configs = OptimizerConfig()
    if isinstance(configs, OptimizerConfig):
        return [(configs,)] * num_stages
    configs = list(configs)
    if len(configs) != num_stages:
        raise ValueError('Got {} optimizer configs for {} stages.'.format(len(configs), num_stages))
    normalised = []
    for config in configs:
        if isinstance(config, OptimizerConfig):
            config = (config,)
        else:
            config = tuple(config)
            if len(config) == 0:
                raise ValueError('An optimizer chain must hold at least one OptimizerConfig.')
        for link in config:
            if not isinstance(link, OptimizerConfig):
                raise TypeError('Expected an OptimizerConfig but got {}'.format(type(link).__name__))
        normalised.append(config)
    return normalised


def _check_inputs(t, y, parameters, checkpoints, configs, time_horizon, fractions, OPTIMIZERS):
    _check_timelike('t', t)
    if not isinstance(y, torch.Tensor):
        raise TypeError('y must be a torch.Tensor')
    _assert_floating('y', y)
    if y.ndimension() == 0 or y.shape[0] != t.shape[0]:
        raise ValueError('y must have one entry per time point: got y of shape {} for {} time points'.format(
            tuple(y.shape), t.shape[0]))
    if not isinstance(parameters, torch.Tensor):
        raise TypeError('parameters must be a torch.Tensor')
    _assert_floating('parameters', parameters)
    if parameters.ndimension() != 1:
        raise ValueError('parameters must be one dimensional')

    if time_horizon is None:
        time_horizon = (t[0].item(), t[-1].item())
    time_horizon = _check_horizon(time_horizon)
    start, end = time_horizon
    if t[0].item() < start - _slack(start) or t[-1].item() > end + _slack(end):
        raise ValueError('sample points must lie within the time horizon ({}, {})'.format(start, end))

    horizon_ends = _check_checkpoints(checkpoints, time_horizon, fractions)
    num_points = []
    for index, horizon_end in enumerate(horizon_ends):
        n = _num_points_within(t, horizon_end)
        if n < 2:
            raise InvalidHorizonSequence('checkpoint {} keeps only {} sample point(s); at least 2 are '
                                         'required'.format(horizon_end, n), stage_index=index)
        num_points.append(n)

    configs = _check_configs(configs, len(horizon_ends))
    for chain in configs:
        for config in chain:
            if config.algorithm not in OPTIMIZERS:
                raise ValueError('Invalid algorithm "{}". Must be one of {}'.format(
                    config.algorithm, '{"' + '", "'.join(OPTIMIZERS.keys()) + '"}.'))

    return time_horizon, horizon_ends, num_points, configs


def _named_shapes(module):
    return [(name, param.shape) for name, param in module.named_parameters()]


def _flat_to_named(vector, named_shapes):
    params = {}
    total = 0
    for name, shape in named_shapes:
        next_total = total + shape.numel()
        params[name] = vector[total:next_total].view(shape)
        total = next_total
    return params
