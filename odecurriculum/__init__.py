from ._impl import fit_curriculum
from ._impl import CurriculumFitter
from ._impl import uniform_checkpoints
from ._impl import OdeintSimulator
from ._impl import OptimizerConfig, CancellationToken
from ._impl import FitStage, FitResult, StageResult, OptimizeResult
from ._impl import OPTIMIZERS, Optimizer, TorchOptimizer, ScipyOptimizer
from ._impl import (CurriculumError, InvalidHorizonSequence, OptimizationFailure, OptimizationDivergence,
                    SimulationFailure, FitCancelled)
__version__ = "0.1.0"
