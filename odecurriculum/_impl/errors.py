class CurriculumError(RuntimeError):
    """Base class for errors raised while fitting over a horizon curriculum.

    `stage_index` is the zero-based index of the stage that failed, or None when the
    error was raised before any stage ran (or outside of a fit).
    """

    def __init__(self, message, stage_index=None):
        super(CurriculumError, self).__init__(message)
        self.stage_index = stage_index

    def __str__(self):
        message = super(CurriculumError, self).__str__()
        if self.stage_index is None:
            return message
        return 'stage {}: {}'.format(self.stage_index, message)


class InvalidHorizonSequence(CurriculumError, ValueError):
    pass


class OptimizationFailure(CurriculumError):
    pass


# Kept as a second name: a diverging optimizer and a non-converging one are reported the same way.
OptimizationDivergence = OptimizationFailure


class SimulationFailure(CurriculumError):
    pass


class FitCancelled(CurriculumError):
    pass
