import torch
from torchdiffeq import odeint

import odecurriculum

DTYPES = (torch.float32, torch.float64)
DEVICES = ['cpu']
if torch.cuda.is_available():
    DEVICES.append('cuda')
TORCH_ALGORITHMS = ('adam', 'adamw', 'sgd', 'rmsprop', 'lbfgs')
SCIPY_ALGORITHMS = ('bfgs', 'l-bfgs-b')


class LinearODE(torch.nn.Module):

    def __init__(self, dim=2):
        super(LinearODE, self).__init__()
        self.A = torch.nn.Parameter(torch.zeros(dim, dim))

    def forward(self, t, y):
        return y @ self.A.T


class DampedOscillator(torch.nn.Module):
    """True dynamics used to generate observations: a lightly damped spiral."""

    def __init__(self):
        super(DampedOscillator, self).__init__()
        self.register_buffer('A', torch.tensor([[-0.1, 2.0], [-2.0, -0.1]]))

    def forward(self, t, y):
        return y @ self.A.T


def construct_problem(device='cpu', dtype=torch.float64, npts=30, t_end=5.0):
    """Observations of DampedOscillator at `npts` uniform points on [0, t_end], and a zero-initialised model."""
    # Reference solution always in float64, then cast.
    true_f = DampedOscillator().to(dtype=torch.float64, device=device)
    y0 = torch.tensor([2.0, 0.0], dtype=torch.float64, device=device)
    t = torch.linspace(0.0, t_end, npts, dtype=torch.float64, device=device)
    with torch.no_grad():
        y = odeint(true_f, y0, t, rtol=1e-9, atol=1e-10)
    y0, t, y = y0.to(dtype), t.to(dtype), y.to(dtype)

    model = LinearODE().to(dtype=dtype, device=device)
    simulator = odecurriculum.OdeintSimulator(model, y0, method='rk4', options=dict(step_size=0.05))
    return simulator, t, y, true_f.A.reshape(-1).to(dtype)


class RecordingSimulator(object):
    """Simulator whose prediction is `parameters[0] * t`, recording every call."""

    def __init__(self):
        self.calls = []

    def __call__(self, parameters, time_horizon, sample_points):
        self.calls.append((time_horizon, sample_points.clone()))
        return parameters[0] * sample_points


class RecordingOptimizer(odecurriculum.Optimizer):
    """Evaluates the loss once and returns `initial + 1`, recording every invocation."""
    invocations = []
    fail_at = None

    def optimize(self, loss_fn, initial_parameters):
        RecordingOptimizer.invocations.append((self.stage_index, initial_parameters.clone()))
        if self.stage_index == RecordingOptimizer.fail_at:
            raise odecurriculum.OptimizationFailure('did not converge')
        loss = loss_fn(initial_parameters).item()
        if self.callback is not None:
            self.callback(1, loss)
        return odecurriculum.OptimizeResult(initial_parameters + 1, loss, 1, True, False, 'ok')

    @classmethod
    def reset(cls, fail_at=None):
        cls.invocations = []
        cls.fail_at = fail_at


def quadratic_loss(target):
    def loss_fn(parameters):
        return ((parameters - target) ** 2).sum()
    return loss_fn


def rosenbrock(parameters):
    return (1 - parameters[0]) ** 2 + 100 * (parameters[1] - parameters[0] ** 2) ** 2


ROSENBROCK_START = (-1.2, 1.0)
