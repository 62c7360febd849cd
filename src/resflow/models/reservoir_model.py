"""Functionality shared by all reservoir models: phase handling, upstream weighted
phase fluxes, cell sources, well coupling, convergence scaling and diagnostic output.

The concrete models (:mod:`~resflow.models.black_oil`,
:mod:`~resflow.models.compositional_flow`, :mod:`~resflow.models.thermal`) assemble
their conservation equations from these building blocks.

"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np
import scipy.sparse as sps

import resflow.ad.functions as af
import resflow.utils.common_constants as const
from resflow.ad.forward_mode import initAdArrays
from resflow.errors import AssemblyError
from resflow.models.linearized_problem import LinearizedProblem
from resflow.models.physical_model import PhysicalModel
from resflow.numerics.nonlinear.convergence_check import CNVMBCriterion
from resflow.params.fluid import PHASE_NAMES
from resflow.wells.well import initialize_well_solutions
from resflow.wells.well_model import WellModel

logger = logging.getLogger(__name__)

SATURATION_NAMES = {"water": "sw", "oil": "so", "gas": "sg"}
"""Short names of the phase saturations."""


class ReservoirModel(PhysicalModel):
    """Base class of models for flow in porous media with wells.

    Parameters:
        operators: :class:`~resflow.numerics.discretization.DiscreteOperators`.
        fluid: Fluid object. Must provide ``phases``, the active phases in canonical
            order.
        params: Model parameters, merged into the defaults:

            - ``use_cnv`` (True): use the CNV/MB convergence measures. Otherwise
              the maximum norm of each equation is compared to
              ``nonlinear_tolerance``.
            - ``tolerance_cnv`` (1e-3), ``tolerance_mb`` (1e-7),
              ``tolerance_wells`` (1e-6).
            - ``dp_max_rel`` (inf): maximal relative pressure change per update.
            - ``ds_max`` (0.2): maximal saturation change per update.
            - ``drs_max_rel`` (inf): maximal relative change of dissolution ratios.
            - ``dz_max`` (0.1): maximal change of mole fractions per update.
            - ``output_fluxes`` (True): store phase fluxes on the state.
            - ``extra_state_output`` (False): store mobilities, shrinkage factors,
              upstream flags and densities on the state.
            - ``stabilization_epsilon`` (1e-8): threshold for degenerate rows.
            - ``gravity_acceleration``: used for the well bore pressure drop.

        rock: Rock properties. Needed by models with rock energy or adsorption.

    """

    def __init__(
        self, operators, fluid, params: Optional[dict] = None, rock=None
    ) -> None:
        default_params = {
            "use_cnv": True,
            "tolerance_cnv": 1e-3,
            "tolerance_mb": 1e-7,
            "tolerance_wells": 1e-6,
            "dp_max_rel": np.inf,
            "ds_max": 0.2,
            "drs_max_rel": np.inf,
            "dz_max": 0.1,
            "output_fluxes": True,
            "extra_state_output": False,
            "stabilization_epsilon": 1e-8,
            "gravity_acceleration": const.GRAVITY_ACCELERATION,
        }
        if params is not None:
            default_params.update(params)
        super().__init__(default_params)

        self.operators = operators
        self.fluid = fluid
        self.rock = rock
        if rock is not None and rock.num_cells != operators.num_cells:
            raise ValueError("Rock and operators have different number of cells")

        self.well_model = WellModel(
            self.phases,
            {"gravity_acceleration": self.params["gravity_acceleration"]},
        )

    # ---- Phases ----------------------------------------------------------------------

    @property
    def phases(self) -> list[str]:
        """Active phases, in canonical order."""
        return list(self.fluid.phases)

    @property
    def water(self) -> bool:
        return "water" in self.phases

    @property
    def oil(self) -> bool:
        return "oil" in self.phases

    @property
    def gas(self) -> bool:
        return "gas" in self.phases

    @property
    def num_cells(self) -> int:
        return self.operators.num_cells

    def phase_index(self, phase: str) -> int:
        """Column of a phase in the saturation field."""
        if phase not in self.phases:
            raise AssemblyError(f"Phase {phase} is not active")
        return self.phases.index(phase)

    # ---- Named access ----------------------------------------------------------------

    def get_variable_field(self, name: str):
        key = name.lower()
        if key in ("pressure", "p"):
            return "pressure", None
        if key in ("s", "saturation"):
            return "s", None
        for phase, short in SATURATION_NAMES.items():
            if key in (phase, short):
                return "s", self.phase_index(phase)
        if key in ("t", "temperature"):
            return "T", None
        return super().get_variable_field(name)

    # ---- Primary variables -----------------------------------------------------------

    def seed_variables(self, values: list, res_only: bool) -> list:
        """Independent AD variables of the values, or plain copies in residual-only
        mode."""
        values = [np.asarray(v, dtype=float).ravel() for v in values]
        if res_only:
            return [v.copy() for v in values]
        return initAdArrays(values)

    def well_solutions(self, state, wells: list) -> list:
        """Well solutions of the state. Initialized from the wells if the state has
        none, or if they do not match the wells."""
        ws = state.get("well_solutions")
        if ws is None or [w.name for w in ws] != [w.name for w in wells]:
            ws = initialize_well_solutions(wells, state["pressure"])
            self.well_model.assign_values_from_control(ws, wells)
            state["well_solutions"] = ws
        return ws

    def make_problem(
        self,
        eqs: list,
        types: list,
        names: list,
        primary_variables: list,
        values: list,
        state,
        dt: float,
        forces=None,
        iteration: int = -1,
    ) -> LinearizedProblem:
        return LinearizedProblem(
            eqs,
            types,
            names,
            primary_variables,
            state,
            dt,
            primary_variable_sizes=[np.size(v) for v in values],
            iteration=iteration,
            driving_forces=forces,
        )

    # ---- Fluxes ----------------------------------------------------------------------

    def phase_fluxes(self, pressures: dict, rho: dict, mob: dict):
        """Upstream weighted phase fluxes in reservoir volume per time.

        The potential difference over a connection is
        ``dp = grad(p) - face_average(rho) * gdz``. The first neighbor is upstream
        where ``dp <= 0``, and the flux ``v = -face_upstream(mob) * T * dp`` is
        positive along the connection.

        Returns:
            Tuple of fluxes, potential differences and upstream flags, each a dict
            keyed by phase.

        """
        op = self.operators
        v, dp, flags = {}, {}, {}
        for ph in pressures:
            dp[ph] = op.grad(pressures[ph]) - op.face_average(rho[ph]) * op.gdz
            flags[ph] = af.value(dp[ph]) <= 0
            v[ph] = -op.face_upstream(flags[ph], mob[ph]) * op.T * dp[ph]
        return v, dp, flags

    # ---- Sources and wells -----------------------------------------------------------

    def cell_scatter(self, cells: np.ndarray) -> sps.csr_matrix:
        """Matrix adding values at (possibly repeated) cells into cell vectors."""
        cells = np.asarray(cells, dtype=int)
        return sps.csr_matrix(
            (np.ones(cells.size), (cells, np.arange(cells.size))),
            shape=(self.num_cells, cells.size),
        )

    def source_phase_rates(self, src, mob: dict) -> dict:
        """Reservoir volume rates of each phase at the source cells.

        Injecting sources distribute the rate by the given phase fractions,
        producing sources by the fractional flow of the cell.

        """
        cells = src.cells
        if src.sat.shape[1] != len(self.phases):
            raise AssemblyError(
                f"Source saturations have {src.sat.shape[1]} columns for "
                f"{len(self.phases)} phases"
            )
        mob_tot = 0
        for ph in self.phases:
            mob_tot = mob_tot + mob[ph][cells]
        injecting = src.rate > 0
        q = {}
        for k, ph in enumerate(self.phases):
            frac = mob[ph][cells] / af.maximum(mob_tot, 1e-20)
            q[ph] = src.rate * af.where(injecting, src.sat[:, k], frac)
        return q

    def add_cell_rates(self, eq, cells, q):
        """Subtract rates at cells from a conservation equation."""
        return eq - af.matmul(self.cell_scatter(cells), q)

    # ---- Convergence -----------------------------------------------------------------

    def check_convergence(self, problem):
        if not self.params["use_cnv"]:
            return super().check_convergence(problem)
        criterion = CNVMBCriterion(
            self.params["tolerance_cnv"],
            self.params["tolerance_mb"],
            self.params["tolerance_wells"],
        )
        return criterion.check(problem, self)

    def conservation_scaling(self, problem):
        """Pore volumes and formation volume factors for the CNV/MB measures.

        Returns:
            Tuple of pore volumes and a dict from conservation equation name to the
            inverse shrinkage factors of the cells.

        """
        b = self.shrinkage_factors(problem.state)
        B = {name: 1 / np.asarray(val) for name, val in b.items()}
        return self.operators.pv, B

    def shrinkage_factors(self, state) -> dict:
        """Reservoir to conserved unit conversion per conservation equation."""
        raise NotImplementedError

    # ---- State -----------------------------------------------------------------------

    def validate_state(self, state):
        state = super().validate_state(state)
        nc = self.num_cells
        if "pressure" not in state:
            raise AssemblyError("State has no pressure")
        state["pressure"] = np.asarray(state["pressure"], dtype=float).ravel()
        if state["pressure"].size != nc:
            raise AssemblyError(
                f"Pressure of size {state['pressure'].size} for {nc} cells"
            )
        nph = len(self.phases)
        if "s" not in state:
            if nph > 1:
                raise AssemblyError("State has no saturations")
            state["s"] = np.ones((nc, 1))
        s = np.atleast_2d(np.asarray(state["s"], dtype=float))
        if s.shape != (nc, nph):
            raise AssemblyError(
                f"Saturations of shape {s.shape}, expected {(nc, nph)}"
            )
        state["s"] = s
        return state

    def prepare_timestep(self, state, state0, dt, forces=None):
        state = self.validate_state(state)
        if "well_solutions" in state:
            # Well solutions are updated in place, and must not be shared with state0.
            state["well_solutions"] = [ws.copy() for ws in state["well_solutions"]]
        wells = [] if forces is None else forces.wells
        self.well_solutions(state, wells)
        return state

    @staticmethod
    def normalize_saturations(s: np.ndarray) -> np.ndarray:
        """Clamp saturations to [0, 1] and scale each row to sum one."""
        s = np.clip(s, 0.0, 1.0)
        total = np.sum(s, axis=1, keepdims=True)
        total[total == 0] = 1.0
        return s / total

    def update_wells(self, state, problem, dx, forces) -> None:
        """Apply increments to the well solutions and enforce the controls."""
        if forces is None or len(forces.wells) == 0:
            return
        increments = {
            name: self.get_increment(dx, problem, name)
            for name in self.well_model.primary_variable_names()
        }
        self.well_model.update_well_solutions(
            state["well_solutions"],
            forces.wells,
            increments,
            self.params["dp_max_rel"],
        )

    def store_diagnostics(self, state, v: dict, mob: dict, b: dict, rho: dict, flags):
        """Store fluxes and, optionally, other intermediate quantities on the state.

        Inactive phases get zero columns so that the layout is always water, oil,
        gas.

        """

        def stack(d: dict, n: int) -> np.ndarray:
            return np.column_stack(
                [
                    np.asarray(af.value(d[ph])) if ph in d else np.zeros(n)
                    for ph in PHASE_NAMES
                ]
            )

        nf, nc = self.operators.num_faces, self.num_cells
        if self.params["output_fluxes"]:
            state["flux"] = stack(v, nf)
        if self.params["extra_state_output"]:
            state["mob"] = stack(mob, nc)
            state["bfactor"] = stack(b, nc)
            state["rho"] = stack(rho, nc)
            state["upstream_flag"] = np.column_stack(
                [
                    flags[ph] if ph in flags else np.zeros(nf, dtype=bool)
                    for ph in PHASE_NAMES
                ]
            )
