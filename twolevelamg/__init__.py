"""Two-level algebraic multigrid preconditioner."""
from . import tlm
from .two_level_method import TwoLevelMethod, two_level_solver
from .tlm.coarse import AMGInverseOperator, OneStepAMGCoarseSolverPolicy
from .tlm.transfer import AggregationLevelTransferPolicy, LevelTransferPolicy
from .tlm.types import AggregationCriterion, InverseOperatorResult, SolverCategory

__all__ = [
    'tlm',
    'TwoLevelMethod',
    'two_level_solver',
    'AMGInverseOperator',
    'OneStepAMGCoarseSolverPolicy',
    'AggregationLevelTransferPolicy',
    'LevelTransferPolicy',
    'AggregationCriterion',
    'InverseOperatorResult',
    'SolverCategory',
]
