"""
Errors raised by the control engine.

All failures are fatal for the run that raised them; nothing is retried.
Simulators attach the index of the failing step before re-raising.
"""


class ControlEngineError(Exception):
    """Base class for every error raised by the control engine"""

    def __init__(self, message, step=None, matrices=None):
        super().__init__(message)
        self.message = message
        self.step = step
        # Matrices involved in the failure, kept for diagnosis
        self.matrices = dict(matrices or {})

    def __str__(self):
        if self.step is None:
            return self.message
        return f"step {self.step}: {self.message}"


class ModelConfigurationError(ControlEngineError):
    """Bad model or weighting: non-stabilizable pair, R or H not positive definite"""


class SolverFailure(ControlEngineError):
    """QP infeasible or Riccati solve did not return a stabilizing gain"""


class NumericalIllConditioning(ControlEngineError):
    """Non-finite values produced by discretization or matrix powers"""
