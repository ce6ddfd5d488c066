# ebm_cases.py - v1

from typing import Optional

import numpy as np
import sympy

import ebmbase as eb
import ebm_geography as geo

t_sym = sympy.Symbol("t", nonnegative=True)


def make_toy_planet(
    nx: int = 4,
    ny: int = 4,
    *,
    surface: int = eb.LAND,
    albedo: float = 0.3,
    forcing: Optional[float] = None,
    co2_concentration: float = 315.0,
    ntimesteps: int = eb.DEFAULT_NTIMESTEPS,
    **model_kwargs,
):
    """
    Mesh and model of a planet covered by a single surface type.

    With forcing=None the seasonal forcing follows from the orbit of
    model_kwargs.get("year", 1950); otherwise the forcing is the given
    constant everywhere and at all times.
    """
    mesh = eb.LatLonMesh(nx, ny)
    geography = geo.make_uniform_geography(nx, ny, surface)
    albedo_field = geo.make_uniform_albedo(nx, ny, albedo)

    solar_forcing = None
    if forcing is not None:
        solar_forcing = np.full((nx, ny, ntimesteps), float(forcing))

    model = eb.PhysicalModel(
        mesh,
        geography,
        albedo_field,
        co2_concentration=co2_concentration,
        ntimesteps=ntimesteps,
        solar_forcing=solar_forcing,
        **model_kwargs,
    )
    return mesh, model


def equilibrium_forcing(T_eq, co2_concentration=315.0, consts=eb.default_climate_consts):
    """
    Forcing S balancing S = A + B T_eq.
    """
    A = eb.calc_radiative_cooling_co2(co2_concentration, consts)
    return A + consts.radiative_cooling_feedback * T_eq


class UniformRelaxationCase:
    """
    Spatially uniform planet under constant forcing. Diffusion plays no role
    and every column follows

        C dT/dt = S - A - B T,    T(0) = T0

    whose exact solution is derived symbolically.
    """

    def __init__(
        self,
        *,
        nx: int = 4,
        ny: int = 4,
        surface: int = eb.LAND,
        T_eq: float = 20.0,
        T0: float = eb.Discretization.INITIAL_TEMPERATURE,
        co2_concentration: float = 315.0,
    ):
        self.nx, self.ny = nx, ny
        self.T0 = T0
        self.forcing = equilibrium_forcing(T_eq, co2_concentration)
        self.mesh, self.model = make_toy_planet(
            nx,
            ny,
            surface=surface,
            forcing=self.forcing,
            co2_concentration=co2_concentration,
            ntimesteps=1,
        )

        C_val = float(self.model.heat_capacity[0, 0])
        assert np.all(self.model.heat_capacity == C_val)

        C, B, A, S = sympy.symbols("C B A S", positive=True)
        T = sympy.Function("T")
        ode = sympy.Eq(C * T(t_sym).diff(t_sym), S - A - B * T(t_sym))
        sol = sympy.dsolve(ode, T(t_sym), ics={T(0): sympy.Float(T0)})

        self.T_sym_expr = sol.rhs.subs(
            {
                C: C_val,
                B: self.model.radiative_cooling_feedback,
                A: self.model.radiative_cooling_co2,
                S: self.forcing,
            }
        )
        self._T_exact = sympy.lambdify(t_sym, self.T_sym_expr, "numpy")

    @property
    def T_eq(self):
        return (
            self.forcing - self.model.radiative_cooling_co2
        ) / self.model.radiative_cooling_feedback

    def T_exact(self, t):
        return np.asarray(self._T_exact(np.asarray(t, dtype=float)), dtype=float)

    def make_discretization(self, num_steps_year: int) -> eb.Discretization:
        """
        Discretization seeded with T0 and a primed right-hand side, so that
        the first step is as accurate as the following ones.
        """
        disc = eb.Discretization(self.mesh, self.model, num_steps_year)
        disc.annual_temperature[:, :] = self.T0
        disc.prime_rhs(0)
        return disc
