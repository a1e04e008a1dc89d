from .errors import (CurriculumError, InvalidHorizonSequence, OptimizationFailure, OptimizationDivergence,
                     SimulationFailure, FitCancelled)
from .stages import OptimizerConfig, FitStage, OptimizeResult, StageResult, FitResult, CancellationToken
from .optimizers import OPTIMIZERS, Optimizer, TorchOptimizer, ScipyOptimizer
from .simulate import OdeintSimulator
from .fitter import CurriculumFitter, fit_curriculum, uniform_checkpoints, LOSSES
