import pytest
import numpy as np
from numpy.testing import assert_allclose
import sympy

import ebmbase as eb
import orbital_params as op

NLAT = 65
NT = 48
S0 = 1371.685


@pytest.fixture
def trig():
    return eb.latitude_trig(NLAT)


@pytest.fixture
def insolation_1950(trig):
    siny, cosy, tany = trig
    ref = op.REFERENCE_ORBIT_1950
    return eb.calc_insolation(
        1.0 / NT, ref.obliquity, ref.eccentricity, ref.perihelion, NT, NLAT, siny, cosy, tany, S0
    )


def test_latitude_trig_poles(trig):
    siny, cosy, tany = trig
    assert siny[0] == pytest.approx(1.0)
    assert siny[-1] == pytest.approx(-1.0)
    assert cosy[0] == 0.0 and cosy[-1] == 0.0
    assert tany[0] == eb.POLE_TAN and tany[-1] == -eb.POLE_TAN
    assert siny[NLAT // 2] == pytest.approx(0.0, abs=1e-15)


def test_shapes(insolation_1950):
    lambda_, solar = insolation_1950
    assert lambda_.shape == (NT + 1,)
    assert solar.shape == (NLAT, NT)


def test_orbit_closes_after_one_year(insolation_1950):
    lambda_, _ = insolation_1950
    assert lambda_[0] == 0.0
    assert np.all(np.diff(lambda_) > 0)
    assert lambda_[-1] == pytest.approx(2.0 * np.pi, rel=1e-6)


def test_circular_orbit_uniform_angular_rate(trig):
    siny, cosy, tany = trig
    lambda_, _ = eb.calc_insolation(1.0 / NT, 0.4, 0.0, 1.0, NT, NLAT, siny, cosy, tany, S0)
    assert_allclose(lambda_, 2.0 * np.pi * np.arange(NT + 1) / NT, rtol=1e-12)


def test_polar_night_is_exactly_zero(insolation_1950, trig):
    _, solar = insolation_1950
    _, _, tany = trig
    ref = op.REFERENCE_ORBIT_1950
    lambda_, _ = insolation_1950
    sindec = np.sin(ref.obliquity) * np.sin(lambda_[:NT])
    tandec = sindec / np.sqrt(1.0 - sindec**2)
    z = -tany[:, None] * tandec[None, :]
    assert np.any(z >= 1.0)
    assert np.all(solar[z >= 1.0] == 0.0)
    assert np.all(solar[z < 1.0] >= 0.0)


def test_zero_obliquity_max_at_equator(trig):
    siny, cosy, tany = trig
    _, solar = eb.calc_insolation(1.0 / NT, 0.0, 0.0167, 1.78, NT, NLAT, siny, cosy, tany, S0)
    assert np.all(np.argmax(solar, axis=0) == NLAT // 2)
    # Equinox everywhere: S0/pi cos(lat) scaled by the distance factor
    assert np.all(solar[0] == pytest.approx(0.0, abs=1e-12))


def test_circular_orbit_equinox_value(trig):
    siny, cosy, tany = trig
    _, solar = eb.calc_insolation(1.0 / NT, 0.0, 0.0, 0.0, NT, NLAT, siny, cosy, tany, S0)
    assert_allclose(solar[:, 0], S0 / np.pi * cosy, atol=1e-10)


def test_annual_mean_hemispheric_symmetry_circular_orbit(trig):
    siny, cosy, tany = trig
    _, solar = eb.calc_insolation(1.0 / NT, 0.41, 0.0, 0.0, NT, NLAT, siny, cosy, tany, S0)
    annual = solar.mean(axis=1)
    assert_allclose(annual, annual[::-1], rtol=1e-10, atol=1e-8)


def test_solar_cycle_series_scales_insolation(trig):
    siny, cosy, tany = trig
    ref = op.REFERENCE_ORBIT_1950
    args = (1.0 / NT, ref.obliquity, ref.eccentricity, ref.perihelion, NT, NLAT, siny, cosy, tany)
    _, solar = eb.calc_insolation(*args, S0)
    scale = 1.0 + 0.001 * np.sin(2 * np.pi * np.arange(NT) / NT)
    _, solar_cycle = eb.calc_insolation(*args, S0 * scale)
    assert_allclose(solar_cycle, solar * scale[None, :], rtol=1e-12)


def test_daily_mean_formula_matches_hour_angle_integral():
    # (1/pi) int_0^H (sin(lat) sin(dec) + cos(lat) cos(dec) cos(h)) dh
    h, H, lat, dec = sympy.symbols("h H lat dec", real=True)
    integrand = sympy.sin(lat) * sympy.sin(dec) + sympy.cos(lat) * sympy.cos(dec) * sympy.cos(h)
    integral = sympy.integrate(integrand, (h, 0, H)) / sympy.pi
    formula = (H * sympy.sin(lat) * sympy.sin(dec) + sympy.cos(lat) * sympy.cos(dec) * sympy.sin(H)) / sympy.pi
    assert sympy.simplify(integral - formula) == 0


def test_forcing_is_outer_product():
    nlon, nlat = 8, 9
    co_albedo = np.linspace(0.2, 0.9, nlon * nlat).reshape(nlon, nlat)
    forcing = eb.calc_solar_forcing(co_albedo, ntimesteps=12)
    assert forcing.shape == (nlon, nlat, 12)

    siny, cosy, tany = eb.latitude_trig(nlat)
    ref = op.REFERENCE_ORBIT_1950
    _, solar = eb.calc_insolation(
        1.0 / 12, ref.obliquity, ref.eccentricity, ref.perihelion, 12, nlat, siny, cosy, tany, S0
    )
    assert_allclose(forcing, co_albedo[:, :, None] * solar[None, :, :])


def test_forcing_offset_is_subtracted():
    co_albedo = np.full((4, 5), 0.7)
    base = eb.calc_solar_forcing(co_albedo, ntimesteps=6)
    shifted = eb.calc_solar_forcing(co_albedo, ntimesteps=6, offset=210.3)
    assert_allclose(base - shifted, 210.3)


def test_forcing_zonally_uniform_without_albedo_asymmetry():
    forcing = eb.calc_solar_forcing(np.full((6, 5), 0.5), ntimesteps=8)
    assert_allclose(forcing, np.broadcast_to(forcing[:1], forcing.shape))


@pytest.mark.parametrize("ecc", [1.0, 1.5, -0.1])
def test_forcing_rejects_unphysical_eccentricity(ecc):
    orbit = op.OrbitalElements(eccentricity=ecc, obliquity=0.4, perihelion=1.0)
    with pytest.raises(eb.EBMConfigError, match="Eccentricity"):
        eb.calc_solar_forcing(np.ones((4, 5)), orbit=orbit)


@pytest.mark.parametrize("nt", [0, -3, 2.5])
def test_forcing_rejects_bad_ntimesteps(nt):
    with pytest.raises(eb.EBMConfigError, match="ntimesteps"):
        eb.calc_solar_forcing(np.ones((4, 5)), ntimesteps=nt)


def test_forcing_rejects_wrong_solar_cycle_length():
    with pytest.raises(eb.EBMConfigError, match="length"):
        eb.calc_solar_forcing(np.ones((4, 5)), ntimesteps=6, s0=np.ones(5))
