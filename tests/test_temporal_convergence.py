import pytest
import numpy as np

import ebmbase as eb
import ebm_cases
from cvg_studies_base import (
    RateStatus,
    calculate_observed_rates,
    max_error_over_cycles,
    run_temporal_convergence_study,
)
from utils_for_testing import observed_rates_report


@pytest.fixture(scope="module")
def relaxation_case():
    return ebm_cases.UniformRelaxationCase(T_eq=20.0, T0=5.0)


def test_exact_solution(relaxation_case):
    case = relaxation_case
    assert float(case.T_exact(0.0)) == pytest.approx(5.0)
    assert float(case.T_exact(5.0)) == pytest.approx(20.0)
    assert case.T_eq == pytest.approx(20.0)
    # Relaxation time of a land column, about five weeks
    C = case.model.heat_capacity[0, 0]
    tau = C / case.model.radiative_cooling_feedback
    assert float(case.T_exact(tau)) == pytest.approx(20.0 - 15.0 * np.exp(-1.0))


def test_crank_nicolson_second_order(relaxation_case):
    study = run_temporal_convergence_study(relaxation_case, (24, 48, 96, 192))
    assert all(e1 > e2 for e1, e2 in zip(study.errors, study.errors[1:]))
    assert all(status == RateStatus.OK for status in study.statuses)
    observed_rates_report(study.errors, expected_rate=2.0, tolerance=0.1, halt_print=True)


def test_error_over_several_years(relaxation_case):
    one = max_error_over_cycles(relaxation_case, 48, num_years=1)
    three = max_error_over_cycles(relaxation_case, 48, num_years=3)
    # Transient error dominates; later years only add decayed errors
    assert three == pytest.approx(one, rel=1e-6)


def test_unprimed_first_step_is_less_accurate(relaxation_case):
    case = relaxation_case
    n = 96
    disc = eb.Discretization(case.mesh, case.model, n)
    T_first = disc.step(0)
    unprimed = np.max(np.abs(T_first - case.T_exact(1.0 / n)))

    primed = max_error_over_cycles(case, n)
    assert unprimed > 10.0 * primed


def test_observed_rates():
    errors = [1.0, 0.25, 0.0625, 0.015625]
    rates = calculate_observed_rates(errors)
    assert [status for (_, status) in rates] == [RateStatus.OK, RateStatus.OK]
    assert [rate for (rate, _) in rates] == pytest.approx([2.0, 2.0])


def test_observed_rates_statuses():
    rates = calculate_observed_rates([1.0, 0.5, 0.5, 0.5])
    assert rates[0][1] == RateStatus.ZERO_DENOMINATOR_NONZERO_NUMERATOR
    assert rates[1][1] == RateStatus.ZERO_DENOMINATOR_ZERO_NUMERATOR

    rates = calculate_observed_rates([0.1, 0.2, 0.3])
    assert rates[0][1] == RateStatus.ERROR_INCREASING

    rates = calculate_observed_rates([0.1, 0.2, 0.1])
    assert rates[0][1] == RateStatus.NON_POSITIVE_RATIO
    assert np.isnan(rates[0][0])


def test_study_requires_constant_refinement(relaxation_case):
    with pytest.raises(AssertionError):
        run_temporal_convergence_study(relaxation_case, (24, 48, 72))
