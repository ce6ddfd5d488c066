import pytest
import numpy as np
from numpy.testing import assert_allclose

import orbital_params as op


def test_series_sizes():
    assert op.ECCENTRICITY_SERIES.num_terms == 19
    assert op.OBLIQUITY_SERIES.num_terms == 47
    assert op.PERIHELION_SERIES.num_terms == 78


def test_tables_are_read_only():
    with pytest.raises(ValueError):
        op.ECCENTRICITY_SERIES.amplitude[0] = 0.0
    with pytest.raises(ValueError):
        op.PERIHELION_SERIES.phase[3] = 1.0


def test_reference_epoch_values():
    # Series values at 1950 against the tabulated 1950 AD orbit.
    ref = op.REFERENCE_ORBIT_1950
    assert op.eccentricity(1950) == pytest.approx(ref.eccentricity, abs=5e-5)
    assert op.obliquity(1950) == pytest.approx(ref.obliquity, abs=1e-4)
    assert op.perihelion(1950) == pytest.approx(ref.perihelion, abs=5e-3)


def test_eccentricity_in_unit_interval():
    years = np.arange(-1_000_000, 100_001, 997)
    ecc = op.eccentricity(years)
    assert ecc.shape == years.shape
    assert np.all(ecc >= 0.0)
    assert np.all(ecc < 1.0)
    # Bounded by the sum of the amplitudes
    assert np.all(ecc <= np.sum(np.abs(op.ECCENTRICITY_SERIES.amplitude)))


def test_perihelion_range():
    years = np.arange(-200_000, 10_001, 1013)
    per = op.perihelion(years)
    assert np.all(per >= 0.0)
    assert np.all(per < 2.0 * np.pi)


def test_obliquity_plausible_range():
    years = np.arange(-500_000, 1, 2500)
    ob = np.rad2deg(op.obliquity(years))
    assert np.all(ob > 21.0)
    assert np.all(ob < 25.5)


@pytest.mark.parametrize("year", [1950, 0, -21000, -9000, 2100])
def test_scalar_and_array_agree(year):
    arr = np.array([year, year])
    assert_allclose(op.eccentricity(arr), op.eccentricity(year))
    assert_allclose(op.obliquity(arr), op.obliquity(year))
    assert_allclose(op.perihelion(arr), op.perihelion(year))


def test_deterministic():
    assert op.orbital_elements(-115000) == op.orbital_elements(-115000)


def test_orbital_elements_consistent():
    elems = op.orbital_elements(-6000)
    assert isinstance(elems.eccentricity, float)
    assert elems.eccentricity == op.eccentricity(-6000)
    assert elems.obliquity == op.obliquity(-6000)
    assert elems.perihelion == op.perihelion(-6000)


def test_eccentricity_from_vector_components():
    e_sin_pi, e_cos_pi = op.e_sincos_pi(1950)
    assert op.eccentricity(1950) == pytest.approx(np.hypot(e_sin_pi, e_cos_pi))
