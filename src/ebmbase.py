# ebmbase.py - v1

"""
Energy balance model (EBM) on a longitude-latitude grid.

    C dT/dt = div(D grad T) + S(t) - A - B T

C: heat capacity of the column, D: diffusion coefficient, S: absorbed solar
radiation (seasonal forcing), A + B T: linearized outgoing long-wave
radiation. A depends on the CO2 concentration.

Time is measured in years, heat capacities in W yr m^-2 K^-1 and the
sphere has unit radius.

Layout of grid functions: fields are (nx, ny) arrays, i for longitude and j
for latitude, j = 0 being the north pole and j = ny - 1 the south pole.
Vectors of degrees of freedom use the C order of those arrays (i * ny + j).
"""

import logging
import time

import numpy as np
import scipy.sparse as sp
import scipy.sparse.linalg as spla

from typing import Dict, NamedTuple, Optional, Tuple

from orbital_params import (
    REFERENCE_EPOCH,
    REFERENCE_ORBIT_1950,
    OrbitalElements,
    orbital_elements,
)

logger = logging.getLogger(__name__)


class EBMConfigError(ValueError):
    """Malformed or out-of-range physical input."""


class FactorizationError(RuntimeError):
    """The implicit operator could not be factored."""


class ClimateConsts(NamedTuple):
    solar_constant: float
    co2_base: float
    radiative_cooling_co2_base: float
    co2_forcing_coeff: float
    radiative_cooling_feedback: float
    coeff_eq: float
    coeff_ocean: float
    coeff_land: float
    coeff_land_np: float
    coeff_land_sp: float


default_climate_consts = ClimateConsts(
    solar_constant=1371.685,  # [W m^-2]
    co2_base=315.0,  # [ppm], 1950 AD
    radiative_cooling_co2_base=210.3,  # [W m^-2]
    co2_forcing_coeff=5.35,  # [W m^-2]
    radiative_cooling_feedback=2.15,  # [W m^-2 K^-1]
    coeff_eq=0.65,
    coeff_ocean=0.40,
    coeff_land=0.65,
    coeff_land_np=0.28,
    coeff_land_sp=0.20,
)


class ColumnConsts(NamedTuple):
    # Depths [m], except layer_depth and scale_height [km]
    depth_mixed_layer: float
    depth_soil: float
    depth_seaice: float
    depth_snow: float
    layer_depth: float
    num_layers: int
    scale_height: float
    # Densities [kg m^-3] and specific heats [J kg^-1 K^-1]
    rho_atmos: float
    csp_atmos: float
    rho_water: float
    csp_water: float
    rho_soil: float
    csp_soil: float
    rho_sea_ice: float
    csp_sea_ice: float
    rho_snow: float
    csp_snow: float
    sec_per_yr: float
    days_per_yr: float


default_column_consts = ColumnConsts(
    depth_mixed_layer=70.0,
    depth_soil=2.0,
    depth_seaice=2.5,
    depth_snow=2.0,
    layer_depth=0.5,
    num_layers=10,
    scale_height=7.6,
    rho_atmos=1.293,  # dry air (STP)
    csp_atmos=1005.0,
    rho_water=1000.0,
    csp_water=4186.0,
    rho_soil=1100.0,
    csp_soil=850.0,
    rho_sea_ice=917.0,
    csp_sea_ice=2106.0,
    rho_snow=400.0,
    csp_snow=1900.0,
    sec_per_yr=3.15576e7,
    days_per_yr=365.2422,
)

# Surface classification of the geography table
LAND = 1
PERENNIAL_SEA_ICE = 2
PERMANENT_SNOW = 3
LAKE = 4  # lakes, inland seas
PACIFIC = 5
ATLANTIC = 6
INDIAN = 7
MEDITERRANEAN = 8

SURFACE_TYPES = {
    LAND: "land",
    PERENNIAL_SEA_ICE: "perennial sea ice",
    PERMANENT_SNOW: "permanent snow cover",
    LAKE: "lake or inland sea",
    PACIFIC: "Pacific ocean",
    ATLANTIC: "Atlantic ocean",
    INDIAN: "Indian ocean",
    MEDITERRANEAN: "Mediterranean",
}

# The Mediterranean follows the land law for diffusion.
DIFFUSIVE_OCEANS = (PACIFIC, ATLANTIC, INDIAN)

DEFAULT_NTIMESTEPS = 48
POLE_TAN = 1000.0


def _readonly(arr):
    arr = np.array(arr, dtype=float)
    arr.setflags(write=False)
    return arr


# ---------------------------------------------------------------------------
# Radiative cooling
# ---------------------------------------------------------------------------


def calc_radiative_cooling_co2(
    co2_concentration=315.0, consts: ClimateConsts = default_climate_consts
):
    """
    A = A_base - 5.35 ln(co2 / co2_base), in W m^-2.

    Default CO2 concentration is 315 ppm (year 1950).
    """
    if not np.isfinite(co2_concentration) or co2_concentration <= 0:
        raise EBMConfigError(
            f"CO2 concentration must be positive and finite, got {co2_concentration!r} ppm."
        )
    return consts.radiative_cooling_co2_base - consts.co2_forcing_coeff * np.log(
        co2_concentration / consts.co2_base
    )


# ---------------------------------------------------------------------------
# Insolation and solar forcing
# ---------------------------------------------------------------------------


def latitude_trig(nlat: int) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    sin, cos and tan of the latitudes lat_j = pi/2 - j pi/(nlat-1).

    At the poles cos is set to 0 and tan to +-1000, which keeps the polar
    night / polar day branches of the insolation intact.
    """
    if nlat < 2:
        raise EBMConfigError(f"At least 2 latitude bands are required, got {nlat}.")

    lat = np.pi / 2.0 - np.pi / (nlat - 1.0) * np.arange(nlat)
    siny = np.sin(lat)
    cosy = np.cos(lat)
    tany = np.tan(lat)
    cosy[0] = cosy[-1] = 0.0
    tany[0] = POLE_TAN
    tany[-1] = -POLE_TAN
    return siny, cosy, tany


def calc_insolation(dt, obliquity, eccentricity, perihelion, nt, nlat, siny, cosy, tany, s0):
    """
    Daily mean insolation over one astronomical year.

    The orbital angle lambda (measured from the vernal equinox) follows

        dlambda/dt = 2 pi / (1 - e^2)^1.5 (1 - e cos(lambda - per))^2

    integrated with a fourth-order Runge-Kutta method with step dt.

    Args:
        dt: Time step as a fraction of the year.
        s0: Solar constant, scalar or a length nt series (solar cycle).

    Returns:
        lambda_: Orbital angle at the nt + 1 time levels.
        solar: (nlat, nt) array of daily mean insolation [W m^-2].
    """
    ecc = eccentricity
    s0 = np.broadcast_to(np.asarray(s0, dtype=float), (nt,))

    eccfac = 1.0 - ecc**2
    rzero = (2.0 * np.pi) / eccfac**1.5

    def rate(nu):
        return rzero * (1.0 - ecc * np.cos(nu)) ** 2

    lambda_ = np.zeros(nt + 1)
    for n in range(1, nt + 1):
        nu = lambda_[n - 1] - perihelion
        t1 = dt * rate(nu)
        t2 = dt * rate(nu + 0.5 * t1)
        t3 = dt * rate(nu + 0.5 * t2)
        t4 = dt * rate(nu + t3)
        lambda_[n] = lambda_[n - 1] + (t1 + 2.0 * t2 + 2.0 * t3 + t4) / 6.0

    siny = np.asarray(siny)[:nlat]
    cosy = np.asarray(cosy)[:nlat]
    tany = np.asarray(tany)[:nlat]

    solar = np.zeros((nlat, nt))
    for n in range(nt):
        nu = lambda_[n] - perihelion
        rhofac = ((1.0 - ecc * np.cos(nu)) / eccfac) ** 2
        sindec = np.sin(obliquity) * np.sin(lambda_[n])
        cosdec = np.sqrt(1.0 - sindec**2)
        tandec = sindec / cosdec

        z = -tany * tandec
        h_zero = np.arccos(np.clip(z, -1.0, 1.0))
        solar[:, n] = np.select(
            [z >= 1.0, z <= -1.0],
            [
                0.0,  # polar night
                rhofac * s0[n] * siny * sindec,  # no sunset
            ],
            default=rhofac
            / np.pi
            * s0[n]
            * (h_zero * siny * sindec + cosy * cosdec * np.sin(h_zero)),
        )

    return lambda_, solar


def calc_solar_forcing(
    co_albedo,
    *,
    ntimesteps: int = DEFAULT_NTIMESTEPS,
    s0=default_climate_consts.solar_constant,
    orbit: OrbitalElements = REFERENCE_ORBIT_1950,
    offset: float = 0.0,
):
    """
    Seasonal solar forcing, (nlon, nlat, ntimesteps):

        forcing[i, j, t] = insolation[j, t] * co_albedo[i, j] - offset
    """
    co_albedo = np.asarray(co_albedo, dtype=float)
    if co_albedo.ndim != 2:
        raise EBMConfigError(
            f"co_albedo must be a (nlon, nlat) array, got shape {co_albedo.shape}."
        )
    if int(ntimesteps) != ntimesteps or ntimesteps <= 0:
        raise EBMConfigError(f"ntimesteps must be a positive integer, got {ntimesteps!r}.")
    if not 0.0 <= orbit.eccentricity < 1.0:
        raise EBMConfigError(
            f"Eccentricity must lie in [0, 1), got {orbit.eccentricity!r}."
        )
    s0_arr = np.asarray(s0, dtype=float)
    if s0_arr.ndim != 0 and s0_arr.shape != (ntimesteps,):
        raise EBMConfigError(
            f"Solar constant series must have length {ntimesteps}, got shape {s0_arr.shape}."
        )

    nlat = co_albedo.shape[1]
    siny, cosy, tany = latitude_trig(nlat)
    _, solar = calc_insolation(
        1.0 / ntimesteps,
        orbit.obliquity,
        orbit.eccentricity,
        orbit.perihelion,
        ntimesteps,
        nlat,
        siny,
        cosy,
        tany,
        s0_arr,
    )

    return solar[np.newaxis, :, :] * co_albedo[:, :, np.newaxis] - offset


# ---------------------------------------------------------------------------
# Heat capacity and diffusion coefficients
# ---------------------------------------------------------------------------


def _check_geography(geography):
    geography = np.asarray(geography)
    if geography.ndim != 2:
        raise EBMConfigError(
            f"geography must be a (nlon, nlat) array, got shape {geography.shape}."
        )
    known = np.isin(geography, list(SURFACE_TYPES))
    if not known.all():
        bad = np.argwhere(~known)
        i, j = bad[0]
        raise EBMConfigError(
            f"{len(bad)} cell(s) with unknown surface classification, first at "
            f"(i={i}, j={j}) with value {geography[i, j]!r}. "
            f"Recognized values: {sorted(SURFACE_TYPES)}."
        )
    return geography.astype(int)


def calc_atmosphere_heat_capacity(cc: ColumnConsts = default_column_consts):
    """
    Heat capacity of an atmosphere with exponentially decaying density,
    integrated over num_layers layers of layer_depth km.
    """
    z = (0.25 + cc.layer_depth * np.arange(cc.num_layers)) / cc.scale_height
    return (
        cc.csp_atmos * cc.layer_depth * 1000.0 * cc.rho_atmos * np.sum(np.exp(-z))
        / cc.sec_per_yr
    )


def _column_heat_capacities(cc: ColumnConsts) -> Dict[str, float]:
    return {
        "soil": cc.depth_soil * cc.rho_soil * cc.csp_soil / cc.sec_per_yr,
        "seaice": cc.depth_seaice * cc.rho_sea_ice * cc.csp_sea_ice / cc.sec_per_yr,
        "snow": cc.depth_snow * cc.rho_snow * cc.csp_snow / cc.sec_per_yr,
        "mixed_layer": cc.depth_mixed_layer * cc.rho_water * cc.csp_water / cc.sec_per_yr,
    }


def calc_heat_capacity(geography, cc: ColumnConsts = default_column_consts):
    """
    Heat capacity of every column [W yr m^-2 K^-1], a function of the surface
    classification only. The atmosphere contributes equally to all columns.
    """
    geography = _check_geography(geography)
    c_atmos = calc_atmosphere_heat_capacity(cc)
    c = _column_heat_capacities(cc)

    by_type = {
        LAND: c["soil"],
        PERENNIAL_SEA_ICE: c["seaice"],
        PERMANENT_SNOW: c["snow"],
        LAKE: c["mixed_layer"] / 3.0,
        PACIFIC: c["mixed_layer"],
        ATLANTIC: c["mixed_layer"],
        INDIAN: c["mixed_layer"],
        MEDITERRANEAN: c["mixed_layer"],
    }

    heatcap = np.zeros(geography.shape)
    for geo, c_layer in by_type.items():
        heatcap[geography == geo] = c_layer + c_atmos
    return heatcap


class RelaxationTimes(NamedTuple):
    # All in days
    land: float
    snow: float
    sea_ice: float
    mixed_layer: float


def calc_relaxation_times(
    radiative_cooling_feedback=default_climate_consts.radiative_cooling_feedback,
    cc: ColumnConsts = default_column_consts,
) -> RelaxationTimes:
    """
    Radiative relaxation time tau = C / B of the main column types.
    """
    c_atmos = calc_atmosphere_heat_capacity(cc)
    c = _column_heat_capacities(cc)
    to_days = cc.days_per_yr / radiative_cooling_feedback
    return RelaxationTimes(
        land=(c["soil"] + c_atmos) * to_days,
        snow=(c["snow"] + c_atmos) * to_days,
        sea_ice=(c["seaice"] + c_atmos) * to_days,
        mixed_layer=(c["mixed_layer"] + c_atmos) * to_days,
    )


def calc_diffusion_coefficients(geography, consts: ClimateConsts = default_climate_consts):
    """
    Diffusion coefficients at the finest grid level.

    With colat = sin(theta)^5, theta the colatitude:

        oceans:  (coeff_eq - coeff_ocean) colat + coeff_ocean
        others:  (coeff_land - coeff_pole) colat + coeff_pole

    coeff_pole being coeff_land_np up to the equator row and coeff_land_sp
    south of it.
    """
    geography = _check_geography(geography)
    nlat = geography.shape[1]
    if nlat < 2:
        raise EBMConfigError(f"At least 2 latitude bands are required, got {nlat}.")

    theta = np.pi * np.arange(nlat) / (nlat - 1)
    colat = np.sin(theta) ** 5
    j_equator = nlat // 2

    coeff_pole = np.where(
        np.arange(nlat) <= j_equator, consts.coeff_land_np, consts.coeff_land_sp
    )
    land = (consts.coeff_land - coeff_pole) * colat + coeff_pole
    ocean = (consts.coeff_eq - consts.coeff_ocean) * colat + consts.coeff_ocean

    is_ocean = np.isin(geography, DIFFUSIVE_OCEANS)
    return np.where(is_ocean, ocean[np.newaxis, :], land[np.newaxis, :])


# ---------------------------------------------------------------------------
# Mesh and operator assembly
# ---------------------------------------------------------------------------


class LatLonMatrixFactory:
    def __init__(self, nx: int, ny: int):
        """
        Sparsity pattern of the five point stencil on the lat-lon grid.

        Longitude is periodic. The rows j = 0 and j = ny - 1 have no
        neighbour to the north (j - 1) and to the south (j + 1), respectively.
        """
        self.nx = nx
        self.ny = ny

        ii, jj = np.meshgrid(np.arange(nx), np.arange(ny), indexing="ij")
        dof = nx * ny

        sub = np.reshape(ii * ny + jj, dof)
        ip1j = np.reshape(((ii + 1) % nx) * ny + jj, dof)
        im1j = np.reshape(((ii - 1) % nx) * ny + jj, dof)
        ijp1 = np.reshape(ii * ny + np.minimum(jj + 1, ny - 1), dof)
        ijm1 = np.reshape(ii * ny + np.maximum(jj - 1, 0), dof)

        has_ijp1 = np.reshape(jj < ny - 1, dof)
        has_ijm1 = np.reshape(jj > 0, dof)
        always = np.ones(dof, dtype=bool)

        self._keep = np.concatenate([always, always, always, has_ijp1, has_ijm1])
        self.rspec = np.concatenate([sub] * 5)[self._keep]
        self.cspec = np.concatenate([sub, ip1j, im1j, ijp1, ijm1])[self._keep]

    def make_matrix(self, *, A_ij_ij, A_ij_ip1j, A_ij_im1j, A_ij_ijp1, A_ij_ijm1):
        """
        A(i,j ; i,j) = A_ij_ij[i,j]
        A(i,j ; i+1,j) = A_ij_ip1j[i,j]
        A(i,j ; i-1,j) = A_ij_im1j[i,j]
        A(i,j ; i,j+1) = A_ij_ijp1[i,j]
        A(i,j ; i,j-1) = A_ij_ijm1[i,j]

        Entries pointing past the poles are dropped. Repeated (row, col) pairs
        are summed, which happens for nx <= 2.
        """
        nx, ny = self.nx, self.ny
        dof = nx * ny
        for arr in (A_ij_ij, A_ij_ip1j, A_ij_im1j, A_ij_ijp1, A_ij_ijm1):
            assert arr.shape == (nx, ny)

        A_data = np.concatenate(
            [
                A_ij_ij.reshape(dof),
                A_ij_ip1j.reshape(dof),
                A_ij_im1j.reshape(dof),
                A_ij_ijp1.reshape(dof),
                A_ij_ijm1.reshape(dof),
            ]
        )[self._keep]

        return sp.csr_array((A_data, (self.rspec, self.cspec)), shape=(dof, dof))


class LatLonMesh:
    """
    Regular longitude-latitude grid on the unit sphere, pole rows included.

    Cell (i, j) is centered at longitude i dphi and colatitude j dtheta,
    dphi = 2 pi / nx, dtheta = pi / (ny - 1), and spans half a step to each
    side (clipped at the poles, so pole rows are caps split into nx wedges).
    """

    def __init__(self, nx: int, ny: int):
        if int(nx) != nx or nx < 1:
            raise EBMConfigError(f"nx must be a positive integer, got {nx!r}.")
        if int(ny) != ny or ny < 2:
            raise EBMConfigError(f"ny must be an integer >= 2, got {ny!r}.")
        self.nx, self.ny = int(nx), int(ny)
        self.dof = self.nx * self.ny

        self.dphi = 2.0 * np.pi / self.nx
        self.dtheta = np.pi / (self.ny - 1)
        self.colatitude = self.dtheta * np.arange(self.ny)

        self.theta_lo = np.maximum(self.colatitude - 0.5 * self.dtheta, 0.0)
        self.theta_hi = np.minimum(self.colatitude + 0.5 * self.dtheta, np.pi)
        # Colatitudes of the faces between rows j and j + 1
        self.theta_phalf = self.dtheta * (np.arange(self.ny - 1) + 0.5)

        row_area = (np.cos(self.theta_lo) - np.cos(self.theta_hi)) * self.dphi
        self.cell_area = np.broadcast_to(row_area, self.shape).copy()

        self._factory = LatLonMatrixFactory(self.nx, self.ny)

    @property
    def shape(self):
        return (self.nx, self.ny)

    def __len__(self):
        return self.dof

    def __repr__(self):
        return f"LatLonMesh({self.nx}, {self.ny})"

    def to_vector(self, field):
        field = np.asarray(field)
        assert field.shape == self.shape
        return field.reshape(self.dof)

    def to_field(self, vec):
        vec = np.asarray(vec)
        assert vec.shape == (self.dof,)
        return vec.reshape(self.shape)

    def area_weighted_mean(self, field):
        field = np.asarray(field)
        return float(np.sum(field * self.cell_area) / np.sum(self.cell_area))

    def assemble_diffusion_operator(self, diffusion_coeff):
        return assemble_diffusion_operator(self, diffusion_coeff)

    def assemble_operator(self, num_steps_year, model, *, side="implicit"):
        return compute_matrix(self, num_steps_year, model, side=side)


def assemble_diffusion_operator(mesh: LatLonMesh, diffusion_coeff):
    """
    Finite volume discretization of -div(D grad T) on the unit sphere.

        (L T)_c = 1/|c| sum_faces kappa_f (T_c - T_nb)

    with face coefficients the mean of D on both sides. Constants are in the
    kernel of L and sum_c |c| (L T)_c = 0.
    """
    D = np.asarray(diffusion_coeff, dtype=float)
    nx, ny = mesh.shape
    if D.shape != (nx, ny):
        raise EBMConfigError(
            f"diffusion_coeff shape {D.shape} does not match the mesh {mesh.shape}."
        )

    # East faces, between (i, j) and (i + 1, j)
    D_east = 0.5 * (D + np.roll(D, -1, axis=0))
    theta_mid = 0.5 * (mesh.theta_lo + mesh.theta_hi)
    kappa_east = (
        D_east * (mesh.theta_hi - mesh.theta_lo) / (np.sin(theta_mid) * mesh.dphi)
    )
    kappa_west = np.roll(kappa_east, 1, axis=0)

    # South faces, between (i, j) and (i, j + 1)
    kappa_south = np.zeros((nx, ny))
    kappa_south[:, :-1] = (
        0.5 * (D[:, :-1] + D[:, 1:]) * np.sin(mesh.theta_phalf) * mesh.dphi / mesh.dtheta
    )
    kappa_north = np.zeros((nx, ny))
    kappa_north[:, 1:] = kappa_south[:, :-1]

    area = mesh.cell_area
    return mesh._factory.make_matrix(
        A_ij_ij=(kappa_east + kappa_west + kappa_south + kappa_north) / area,
        A_ij_ip1j=-kappa_east / area,
        A_ij_im1j=-kappa_west / area,
        A_ij_ijp1=-kappa_south / area,
        A_ij_ijm1=-kappa_north / area,
    )


def compute_matrix(mesh: LatLonMesh, num_steps_year, model, *, side="implicit"):
    """
    Crank-Nicolson operators for one time step of length 1/num_steps_year:

        implicit: C/dt + (B + L)/2
        explicit: C/dt - (B + L)/2
    """
    if int(num_steps_year) != num_steps_year or num_steps_year <= 0:
        raise EBMConfigError(
            f"num_steps_year must be a positive integer, got {num_steps_year!r}."
        )
    if side not in ("implicit", "explicit"):
        raise ValueError(f"Unknown side: {side}. Use 'implicit' or 'explicit'.")

    dt = 1.0 / num_steps_year
    L = assemble_diffusion_operator(mesh, model.diffusion_coeff)
    C = sp.diags_array(mesh.to_vector(model.heat_capacity) / dt)
    BI = model.radiative_cooling_feedback * sp.eye_array(mesh.dof)

    half = 0.5 * (BI + L)
    if side == "implicit":
        return sp.csr_array(C + half)
    return sp.csr_array(C - half)


# ---------------------------------------------------------------------------
# Physical model
# ---------------------------------------------------------------------------


class PhysicalModel:
    """
    Per-cell parameters of the EBM for one orbital epoch.

    All fields are read-only arrays; the only supported mutation is
    `set_co2_concentration`, which must not run while a time step is
    assembling its right-hand side.
    """

    def __init__(
        self,
        mesh,
        geography,
        albedo,
        *,
        co2_concentration=315.0,
        year=REFERENCE_EPOCH,
        ntimesteps: int = DEFAULT_NTIMESTEPS,
        s0=None,
        solar_forcing=None,
        consts: ClimateConsts = default_climate_consts,
        column_consts: ColumnConsts = default_column_consts,
    ):
        shape = tuple(mesh.shape)
        geography = np.asarray(geography)
        albedo = np.asarray(albedo, dtype=float)
        if geography.shape != shape:
            raise EBMConfigError(
                f"geography shape {geography.shape} does not match the mesh {shape}."
            )
        if albedo.shape != shape:
            raise EBMConfigError(
                f"albedo shape {albedo.shape} does not match the mesh {shape}."
            )
        if not np.all((albedo >= 0.0) & (albedo <= 1.0)):
            raise EBMConfigError("albedo values must lie in [0, 1].")

        self.consts = consts
        self.column_consts = column_consts
        self.year = year

        self._diffusion_coeff = _readonly(calc_diffusion_coefficients(geography, consts))
        self._heat_capacity = _readonly(calc_heat_capacity(geography, column_consts))
        self._albedo = _readonly(albedo)

        if solar_forcing is None:
            self.orbit = orbital_elements(year)
            solar_forcing = calc_solar_forcing(
                1.0 - albedo,
                ntimesteps=ntimesteps,
                s0=consts.solar_constant if s0 is None else s0,
                orbit=self.orbit,
            )
        else:
            self.orbit = None
            solar_forcing = np.asarray(solar_forcing, dtype=float)
            if solar_forcing.shape != shape + (ntimesteps,):
                raise EBMConfigError(
                    f"solar_forcing shape {solar_forcing.shape} does not match "
                    f"{shape + (ntimesteps,)}."
                )
        self._solar_forcing = _readonly(solar_forcing)

        self._radiative_cooling_feedback = float(consts.radiative_cooling_feedback)
        self._co2_concentration = None
        self._radiative_cooling_co2 = None
        self.set_co2_concentration(co2_concentration)

    @classmethod
    def from_files(cls, mesh, geography_path, albedo_path, **kwargs):
        import ebm_geography

        nx, ny = mesh.shape
        geography = ebm_geography.read_geography(geography_path, nx, ny)
        albedo = ebm_geography.read_albedo(albedo_path, nx, ny)
        return cls(mesh, geography, albedo, **kwargs)

    @property
    def diffusion_coeff(self):
        return self._diffusion_coeff

    @property
    def heat_capacity(self):
        return self._heat_capacity

    @property
    def albedo(self):
        return self._albedo

    @property
    def solar_forcing(self):
        return self._solar_forcing

    @property
    def radiative_cooling_co2(self):
        return self._radiative_cooling_co2

    @property
    def radiative_cooling_feedback(self):
        return self._radiative_cooling_feedback

    @property
    def co2_concentration(self):
        return self._co2_concentration

    @property
    def ntimesteps(self):
        return self._solar_forcing.shape[2]

    @property
    def shape(self):
        return self._heat_capacity.shape

    def set_co2_concentration(self, co2_concentration):
        # Validates before touching state
        value = calc_radiative_cooling_co2(co2_concentration, self.consts)
        self._co2_concentration = float(co2_concentration)
        self._radiative_cooling_co2 = float(value)

    def __repr__(self):
        nx, ny = self.shape
        return f"PhysicalModel() with {nx}×{ny} degrees of freedom"


def set_co2_concentration(model: PhysicalModel, co2_concentration):
    model.set_co2_concentration(co2_concentration)


# ---------------------------------------------------------------------------
# Discretization and time stepping
# ---------------------------------------------------------------------------


class LUFactors(NamedTuple):
    low_mat: sp.csr_matrix
    upp_mat: sp.csr_matrix
    perm_array: np.ndarray
    perm_col: np.ndarray


def compute_lu_matrices(mesh, model, num_steps_year, *, pivot_tol=1e-12) -> LUFactors:
    """
    Factors the implicit operator: Pr A Pc = L U.

    Raises:
        FactorizationError: singular or near singular operator.
    """
    mat = mesh.assemble_operator(num_steps_year, model, side="implicit")
    n = mat.shape[0]

    if not np.all(np.isfinite(sp.csc_matrix(mat).data)):
        raise FactorizationError("Operator has non-finite entries.")

    try:
        lu = spla.splu(sp.csc_matrix(mat))
    except RuntimeError as e:
        raise FactorizationError(
            f"LU factorization of the {n}x{n} operator failed: {e}"
        ) from e

    pivots = np.abs(lu.U.diagonal())
    if not np.all(np.isfinite(pivots)) or pivots.min() <= pivot_tol * pivots.max():
        raise FactorizationError(
            f"Operator is near singular: smallest pivot {pivots.min():.3e}, "
            f"largest {pivots.max():.3e}."
        )

    return LUFactors(
        low_mat=sp.csr_matrix(lu.L),
        upp_mat=sp.csr_matrix(lu.U),
        perm_array=np.array(lu.perm_r),
        perm_col=np.array(lu.perm_c),
    )


class Discretization:
    """
    Implicit (Crank-Nicolson) time stepping of the EBM over the annual cycle.

    The operator is factored once at construction. Each step only assembles a
    right-hand side and runs two triangular solves. Later changes of the
    model's CO2 term reach the right-hand side but never the factors.
    """

    INITIAL_TEMPERATURE = 5.0  # [°C]

    def __init__(self, mesh, model: PhysicalModel, num_steps_year: int):
        if int(num_steps_year) != num_steps_year or num_steps_year <= 0:
            raise EBMConfigError(
                f"num_steps_year must be a positive integer, got {num_steps_year!r}."
            )
        if tuple(model.shape) != tuple(mesh.shape):
            raise EBMConfigError(
                f"Model shape {model.shape} does not match the mesh {mesh.shape}."
            )

        tic = time.perf_counter()
        factors = compute_lu_matrices(mesh, model, num_steps_year)
        explicit_mat = mesh.assemble_operator(num_steps_year, model, side="explicit")
        logger.info(
            "Factored %dx%d operator in %.3fs (nnz L=%d, U=%d)",
            mesh.dof,
            mesh.dof,
            time.perf_counter() - tic,
            factors.low_mat.nnz,
            factors.upp_mat.nnz,
        )

        self.low_mat = factors.low_mat
        self.upp_mat = factors.upp_mat
        self.perm_array = factors.perm_array
        self.perm_col = factors.perm_col
        self._explicit_mat = explicit_mat

        self.num_steps_year = int(num_steps_year)
        self.mesh = mesh
        self.model = model

        self.annual_temperature = np.full(
            (mesh.dof, self.num_steps_year), self.INITIAL_TEMPERATURE
        )
        self.rhs = np.zeros(mesh.dof)
        self.last_rhs = np.zeros(mesh.dof)

        # Work buffer for the permuted right-hand side
        self._work = np.zeros(mesh.dof)

    def size(self):
        return self.mesh.shape

    def __repr__(self):
        nx, ny = self.size()
        return f"Discretization() with {nx}×{ny} degrees of freedom"

    def solve(self, b):
        """
        Solves A x = b with the stored factors: permute, forward substitution
        through L, back substitution through U, undo the column permutation.
        """
        self._work[self.perm_array] = b
        y = spla.spsolve_triangular(
            self.low_mat, self._work, lower=True, unit_diagonal=True
        )
        w = spla.spsolve_triangular(self.upp_mat, y, lower=False)
        return w[self.perm_col]

    def forcing_index(self, t):
        return (t * self.model.ntimesteps) // self.num_steps_year

    def source_vector(self, t):
        """
        S(t) - A as a vector of degrees of freedom.
        """
        k = self.forcing_index(t)
        forcing = self.model.solar_forcing[:, :, k]
        return self.mesh.to_vector(forcing) - self.model.radiative_cooling_co2

    def prime_rhs(self, t=0):
        """
        Fills rhs with the source of the step before t, so that the next
        `step(t)` averages two actual sources.
        """
        self.rhs[:] = self.source_vector((t - 1) % self.num_steps_year)

    def _check_step(self, t):
        if not 0 <= t < self.num_steps_year:
            raise IndexError(
                f"Step {t} outside the annual cycle [0, {self.num_steps_year})."
            )

    def step(self, t):
        """
        Advances from annual_temperature[:, t-1] (cyclic) to
        annual_temperature[:, t] and returns the new slice.
        """
        self._check_step(t)
        T_prev = self.annual_temperature[:, t - 1]

        self.last_rhs[:] = self.rhs
        self.rhs[:] = self.source_vector(t)

        b = self._explicit_mat @ T_prev + 0.5 * (self.rhs + self.last_rhs)
        self.annual_temperature[:, t] = self.solve(b)
        return self.annual_temperature[:, t]

    def run_year(self):
        for t in range(self.num_steps_year):
            self.step(t)
        return self.annual_temperature

    def annual_mean(self):
        return np.mean(self.annual_temperature, axis=1)

    def global_mean(self, t: Optional[int] = None):
        """
        Area weighted global mean of the annual mean (t=None) or of step t.
        """
        if t is None:
            vec = self.annual_mean()
        else:
            self._check_step(t)
            vec = self.annual_temperature[:, t]
        return self.mesh.area_weighted_mean(self.mesh.to_field(vec))


def run_annual_cycles(
    discretization: Discretization,
    num_years: int,
    *,
    co2_schedule: Optional[Dict[int, float]] = None,
):
    """
    Runs num_years annual cycles. co2_schedule maps a year index to a CO2
    concentration applied before that year starts.

    Returns:
        Global annual mean temperature of every year.
    """
    co2_schedule = co2_schedule or {}
    history = np.zeros(num_years)

    for year in range(num_years):
        if year in co2_schedule:
            discretization.model.set_co2_concentration(co2_schedule[year])
            logger.info(
                "Year %d: CO2 set to %.1f ppm (A = %.4f W/m^2)",
                year,
                discretization.model.co2_concentration,
                discretization.model.radiative_cooling_co2,
            )
        discretization.run_year()
        history[year] = discretization.global_mean()
        logger.debug("Year %d: global mean temperature %.6f", year, history[year])

        if not np.all(np.isfinite(discretization.annual_temperature)):
            logger.warning("Year %d: non-finite temperatures", year)

    return history
