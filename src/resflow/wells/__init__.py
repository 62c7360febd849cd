"""Wells: descriptions, solutions and the standard well model."""
from .well import (
    CONTROL_TYPES,
    Well,
    WellSolution,
    initialize_well_solutions,
    perforation_sum_matrix,
    perforation_to_well_map,
    reorder_perforations_by_depth,
)
from .well_model import RATE_NAMES, WellModel
