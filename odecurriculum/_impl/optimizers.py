import abc
import logging
import math
import numpy as np
import torch
from scipy.optimize import minimize
from .errors import OptimizationFailure
from .misc import _handle_unused_kwargs
from .stages import OptimizeResult

logger = logging.getLogger(__name__)


class Optimizer(metaclass=abc.ABCMeta):
    """Minimises `loss_fn(parameters)` over a flat parameter vector.

    Subclasses implement `optimize(loss_fn, initial_parameters) -> OptimizeResult`. The initial vector is
    never modified; the returned parameters are the best (lowest loss) vector that was evaluated.
    """
    nonmonotonic_default = False

    def __init__(self, learning_rate, max_iterations, allow_nonmonotonic_loss=None, tol=None,
                 require_convergence=False, callback=None, cancel_token=None, stage_index=None, **unused_kwargs):
        _handle_unused_kwargs(self, unused_kwargs)
        del unused_kwargs

        if allow_nonmonotonic_loss is None:
            allow_nonmonotonic_loss = self.nonmonotonic_default
        self.learning_rate = learning_rate
        self.max_iterations = max_iterations
        self.allow_nonmonotonic_loss = allow_nonmonotonic_loss
        self.tol = tol
        self.require_convergence = require_convergence
        self.callback = callback
        self.cancel_token = cancel_token
        self.stage_index = stage_index

    @abc.abstractmethod
    def optimize(self, loss_fn, initial_parameters):
        raise NotImplementedError

    def _check_cancelled(self):
        if self.cancel_token is not None:
            self.cancel_token.raise_if_cancelled(self.stage_index)

    def _check_loss(self, value):
        if not math.isfinite(value):
            raise OptimizationFailure('{}: loss became {}'.format(self.__class__.__name__, value),
                                      stage_index=self.stage_index)

    def _finish(self, best_parameters, best_loss, iterations, converged, stopped_early, message):
        if self.require_convergence and not converged:
            raise OptimizationFailure('{}: did not converge after {} iterations ({})'.format(
                self.__class__.__name__, iterations, message), stage_index=self.stage_index)
        return OptimizeResult(best_parameters, best_loss, iterations, converged, stopped_early, message)


class TorchOptimizer(Optimizer):
    """Runs a `torch.optim` optimizer on a private copy of the parameter vector."""
    optim_cls = None
    nonmonotonic_default = True

    def __init__(self, learning_rate, max_iterations, **kwargs):
        # Everything the base class does not know about belongs to torch.optim.
        base_keys = ('allow_nonmonotonic_loss', 'tol', 'require_convergence', 'callback', 'cancel_token',
                     'stage_index')
        self.optim_options = {key: kwargs.pop(key) for key in list(kwargs) if key not in base_keys}
        super(TorchOptimizer, self).__init__(learning_rate, max_iterations, **kwargs)

    def _make_optimizer(self, params):
        return self.optim_cls(params, lr=self.learning_rate, **self.optim_options)

    def optimize(self, loss_fn, initial_parameters):
        params = initial_parameters.detach().clone().requires_grad_(True)
        optimizer = self._make_optimizer([params])

        best_parameters = params.detach().clone()
        best_loss = math.inf

        def closure():
            nonlocal best_parameters, best_loss
            optimizer.zero_grad()
            loss = loss_fn(params)
            value = loss.item()
            self._check_loss(value)
            if value < best_loss:
                best_loss = value
                best_parameters = params.detach().clone()
            loss.backward()
            return loss

        prev_loss = None
        converged = self.tol is None
        stopped_early = False
        message = 'reached max_iterations'
        itr = 0
        while itr < self.max_iterations:
            self._check_cancelled()
            itr += 1
            loss = optimizer.step(closure).item()
            logger.debug('%s iteration %d: loss %g', self.__class__.__name__, itr, loss)

            if self.callback is not None and self.callback(itr, loss):
                message = 'stopped by callback'
                break
            if prev_loss is not None:
                if loss > prev_loss and not self.allow_nonmonotonic_loss:
                    logger.warning('%s stopped at iteration %d: loss increased from %g to %g',
                                   self.__class__.__name__, itr, prev_loss, loss)
                    stopped_early = True
                    message = 'loss increased'
                    break
                if self.tol is not None and abs(prev_loss - loss) < self.tol:
                    converged = True
                    message = 'loss change below tol'
                    break
            prev_loss = loss
        else:
            # The last step was never evaluated.
            with torch.no_grad():
                value = loss_fn(params).item()
            if math.isfinite(value) and value < best_loss:
                best_loss = value
                best_parameters = params.detach().clone()

        return self._finish(best_parameters, best_loss, itr, converged, stopped_early, message)


class Adam(TorchOptimizer):
    optim_cls = torch.optim.Adam


class AdamW(TorchOptimizer):
    optim_cls = torch.optim.AdamW


class SGD(TorchOptimizer):
    optim_cls = torch.optim.SGD


class RMSprop(TorchOptimizer):
    optim_cls = torch.optim.RMSprop


class LBFGS(TorchOptimizer):
    optim_cls = torch.optim.LBFGS
    nonmonotonic_default = False

    def _make_optimizer(self, params):
        if 'max_iter' in self.optim_options:
            raise ValueError('LBFGS: use max_iterations instead of max_iter.')
        options = dict(line_search_fn='strong_wolfe')
        options.update(self.optim_options)
        # One quasi-Newton iteration per step, so that max_iterations bounds the iterations.
        options['max_iter'] = 1
        return self.optim_cls(params, lr=self.learning_rate, **options)


class ScipyOptimizer(Optimizer):
    """Runs `scipy.optimize.minimize` with gradients from torch autograd.

    `learning_rate` has no meaning here and is ignored. Options other than the common ones are passed to
    `minimize` as its `options` dict, e.g. `gtol`.

    A run that scipy reports as unsuccessful (e.g. `maxiter` reached) raises `OptimizationFailure`, unless
    `allow_nonconvergence=True`. Stops requested by the callback or by a loss increase are not failures.
    """

    def __init__(self, learning_rate, max_iterations, method='BFGS', allow_nonconvergence=False, **kwargs):
        base_keys = ('allow_nonmonotonic_loss', 'tol', 'require_convergence', 'callback', 'cancel_token',
                     'stage_index')
        self.scipy_options = {key: kwargs.pop(key) for key in list(kwargs) if key not in base_keys}
        super(ScipyOptimizer, self).__init__(learning_rate, max_iterations, **kwargs)
        self.method = method
        self.allow_nonconvergence = allow_nonconvergence

    def optimize(self, loss_fn, initial_parameters):
        dtype = initial_parameters.dtype
        device = initial_parameters.device

        best_parameters = initial_parameters.detach().clone()
        best_loss = math.inf
        state = {'itr': 0, 'prev_loss': None, 'stopped_early': False, 'stopped_by_callback': False}

        def fun(x):
            nonlocal best_parameters, best_loss
            params = torch.tensor(x, dtype=dtype, device=device, requires_grad=True)
            loss = loss_fn(params)
            value = loss.item()
            self._check_loss(value)
            if value < best_loss:
                best_loss = value
                best_parameters = params.detach().clone()
            grad, = torch.autograd.grad(loss, params)
            return value, grad.detach().cpu().numpy().astype(np.float64)

        def callback(intermediate_result):
            self._check_cancelled()
            state['itr'] += 1
            loss = float(intermediate_result.fun)
            logger.debug('%s iteration %d: loss %g', self.__class__.__name__, state['itr'], loss)
            if self.callback is not None and self.callback(state['itr'], loss):
                state['stopped_by_callback'] = True
                raise StopIteration
            prev_loss = state['prev_loss']
            if prev_loss is not None and loss > prev_loss and not self.allow_nonmonotonic_loss:
                logger.warning('%s stopped at iteration %d: loss increased from %g to %g',
                               self.__class__.__name__, state['itr'], prev_loss, loss)
                state['stopped_early'] = True
                raise StopIteration
            state['prev_loss'] = loss

        self._check_cancelled()
        x0 = initial_parameters.detach().cpu().numpy().astype(np.float64)
        options = dict(self.scipy_options)
        options['maxiter'] = self.max_iterations
        res = minimize(fun, x0, jac=True, method=self.method, tol=self.tol, callback=callback, options=options)

        if state['stopped_early']:
            message = 'loss increased'
        elif state['stopped_by_callback']:
            message = 'stopped by callback'
        else:
            message = str(res.message)
            if not res.success and not self.allow_nonconvergence:
                raise OptimizationFailure('{}: {}'.format(self.__class__.__name__, message),
                                          stage_index=self.stage_index)
        converged = bool(res.success) and not state['stopped_early']
        return self._finish(best_parameters, best_loss, max(state['itr'], int(getattr(res, 'nit', 0))), converged,
                            state['stopped_early'], message)


class BFGS(ScipyOptimizer):
    def __init__(self, learning_rate, max_iterations, **kwargs):
        super(BFGS, self).__init__(learning_rate, max_iterations, method='BFGS', **kwargs)


class LBFGSB(ScipyOptimizer):
    def __init__(self, learning_rate, max_iterations, **kwargs):
        super(LBFGSB, self).__init__(learning_rate, max_iterations, method='L-BFGS-B', **kwargs)


OPTIMIZERS = {
    'adam': Adam,
    'adamw': AdamW,
    'sgd': SGD,
    'rmsprop': RMSprop,
    'lbfgs': LBFGS,
    'bfgs': BFGS,
    'l-bfgs-b': LBFGSB,
    'scipy': ScipyOptimizer,
}
