import torch
from torch.func import functional_call
from torchdiffeq import odeint, odeint_adjoint
from .errors import SimulationFailure
from .misc import _check_timelike, _flat_to_named, _is_finite, _named_shapes


class _VectorFunc(torch.nn.Module):
    """Evaluates `base_func` with its parameters replaced by slices of a flat vector."""

    def __init__(self, base_func, named_shapes, vector):
        super(_VectorFunc, self).__init__()
        self.base_func = base_func
        self.named_shapes = named_shapes
        self.vector = vector

    def forward(self, t, y):
        params = _flat_to_named(self.vector, self.named_shapes)
        return functional_call(self.base_func, params, (t, y))


class OdeintSimulator(object):
    """Forward simulation of a parametric ODE with a flat parameter vector.

    The parameters of `func` define the layout of the vector: `initial_parameters()` returns the module's
    current values flattened in `named_parameters()` order, and `simulate` evaluates `func` with the given
    vector substituted in, so gradients flow back to the vector and never into the module.

    Args:
        func: `torch.nn.Module` mapping `(t, y)` to `dy/dt`.
        y0: initial state at the start of every time horizon.
        method, rtol, atol, options: forwarded to `torchdiffeq.odeint`.
        adjoint: integrate with `torchdiffeq.odeint_adjoint` when gradients are required.
        output_fn: optional map from the solution (time along the first dimension) to the observed quantity.
    """

    def __init__(self, func, y0, method=None, rtol=1e-7, atol=1e-9, options=None, adjoint=False, output_fn=None):
        if not isinstance(func, torch.nn.Module):
            raise ValueError('func must be an instance of nn.Module so that its parameters can be flattened.')
        self.func = func
        self.y0 = y0
        self.method = method
        self.rtol = rtol
        self.atol = atol
        self.options = options
        self.adjoint = adjoint
        self.output_fn = output_fn
        self.named_shapes = _named_shapes(func)
        self.num_parameters = sum(shape.numel() for _, shape in self.named_shapes)

    def initial_parameters(self):
        return torch.nn.utils.parameters_to_vector(self.func.parameters()).detach().clone()

    def __call__(self, parameters, time_horizon, sample_points):
        return self.simulate(parameters, time_horizon, sample_points)

    def simulate(self, parameters, time_horizon, sample_points):
        if parameters.ndimension() != 1 or parameters.numel() != self.num_parameters:
            raise ValueError('Expected a parameter vector of length {} but got shape {}'.format(
                self.num_parameters, tuple(parameters.shape)))
        _check_timelike('sample_points', sample_points)

        start = torch.as_tensor(time_horizon[0], dtype=sample_points.dtype, device=sample_points.device)
        prepend = bool(sample_points[0] > start)
        if prepend:
            t = torch.cat([start.reshape(1), sample_points])
        else:
            t = sample_points

        func = _VectorFunc(self.func, self.named_shapes, parameters)
        try:
            if self.adjoint and parameters.requires_grad and torch.is_grad_enabled():
                solution = odeint_adjoint(func, self.y0, t, rtol=self.rtol, atol=self.atol, method=self.method,
                                          options=self.options, adjoint_params=(parameters,))
            else:
                solution = odeint(func, self.y0, t, rtol=self.rtol, atol=self.atol, method=self.method,
                                  options=self.options)
        except (AssertionError, RuntimeError) as exc:
            # torchdiffeq signals step size underflow with an AssertionError.
            raise SimulationFailure('ODE solve failed: {}'.format(exc)) from exc

        if prepend:
            solution = solution[1:]
        if self.output_fn is not None:
            solution = self.output_fn(solution)
        if not _is_finite(solution):
            raise SimulationFailure('ODE solution contains non-finite values')
        return solution
