# cvg_studies_base.py - v1

import logging
import math
import time
import numpy as np
import ebmbase as eb
import ebm_cases
from typing import List, NamedTuple, Sequence, Tuple

logger = logging.getLogger(__name__)


class _RateStatus(NamedTuple):
    OK: str = "OK"
    ZERO_DENOMINATOR_ZERO_NUMERATOR: str = "Differences near zero (converged/stalled?)"
    ZERO_DENOMINATOR_NONZERO_NUMERATOR: str = "Unstable rate (denominator near zero)"
    NON_POSITIVE_RATIO: str = "Non-positive ratio (convergence issue?)"
    ERROR_INCREASING: str = "Error increasing significantly"


RateStatus = _RateStatus()


def calculate_observed_rates(
    errors: Sequence[float], refinement_factor: float = 2.0
) -> List[Tuple[float, str]]:
    """
    Observed convergence rates from consecutive triplets of errors, ordered
    from coarsest to finest:

        rate = log((E_coarse - E_medium) / (E_medium - E_fine)) / log(r)

    Returns:
        [(rate, status), ...], one entry per triplet. rate is nan unless the
        status is RateStatus.OK.
    """
    assert len(errors) >= 3, "At least 3 error values are required for rate calculation."
    assert refinement_factor > 1.0, "Refinement factor must be > 1.0"
    assert all(e >= 0 for e in errors), "Error values must be non-negative."

    log_r = math.log(refinement_factor)
    near_zero_tol = np.finfo(float).eps

    results = []
    for err_coarse, err_medium, err_fine in zip(errors, errors[1:], errors[2:]):
        numerator = err_coarse - err_medium
        denominator = err_medium - err_fine

        if abs(denominator) < near_zero_tol:
            if abs(numerator) < near_zero_tol:
                results.append((np.nan, RateStatus.ZERO_DENOMINATOR_ZERO_NUMERATOR))
            else:
                results.append((np.nan, RateStatus.ZERO_DENOMINATOR_NONZERO_NUMERATOR))
        elif denominator < 0:
            results.append((np.nan, RateStatus.ERROR_INCREASING))
        elif numerator <= 0:
            results.append((np.nan, RateStatus.NON_POSITIVE_RATIO))
        else:
            results.append((math.log(numerator / denominator) / log_r, RateStatus.OK))

    return results


class TemporalStudyResult(NamedTuple):
    steps_per_year: List[int]
    errors: List[float]
    rates: List[float]
    statuses: List[str]


def max_error_over_cycles(
    case: ebm_cases.UniformRelaxationCase, num_steps_year: int, num_years: int = 1
) -> float:
    """
    max_k max_c |T_num(t_k) - T_exact(t_k)| over num_years annual cycles.
    """
    disc = case.make_discretization(num_steps_year)
    dt = 1.0 / num_steps_year
    max_err = 0.0

    for year in range(num_years):
        for t in range(num_steps_year):
            T_num = disc.step(t)
            t_k = year + (t + 1) * dt
            err = np.max(np.abs(T_num - case.T_exact(t_k)))
            max_err = max(max_err, float(err))

    return max_err


def run_temporal_convergence_study(
    case: ebm_cases.UniformRelaxationCase,
    steps_per_year_list: Sequence[int] = (24, 48, 96, 192),
    *,
    num_years: int = 1,
) -> TemporalStudyResult:
    """
    Errors of the annual cycle time stepping against the exact relaxation of
    `case` for successively halved time steps.
    """
    steps_per_year_list = list(steps_per_year_list)
    factors = {b / a for a, b in zip(steps_per_year_list, steps_per_year_list[1:])}
    assert len(factors) == 1, "Steps per year must grow by a constant factor."
    refinement_factor = factors.pop()

    errors = []
    for n in steps_per_year_list:
        tic = time.perf_counter()
        errors.append(max_error_over_cycles(case, n, num_years))
        logger.info(
            "num_steps_year=%d: max error %.4e (%.2fs)",
            n,
            errors[-1],
            time.perf_counter() - tic,
        )

    computed_rates = calculate_observed_rates(errors, refinement_factor)
    return TemporalStudyResult(
        steps_per_year=steps_per_year_list,
        errors=errors,
        rates=[rate for (rate, status) in computed_rates],
        statuses=[status for (rate, status) in computed_rates],
    )


class SpinUpResult(NamedTuple):
    converged: bool
    num_years: int
    last_change: float
    history: np.ndarray  # global annual mean temperature per year


def spin_up(
    discretization: eb.Discretization,
    *,
    max_years: int = 50,
    tol: float = 1e-6,
) -> SpinUpResult:
    """
    Runs annual cycles until the annual mean temperature field changes by
    less than tol (max norm) from one year to the next.
    """
    history = []
    last_change = np.inf
    previous = discretization.annual_mean()

    for year in range(max_years):
        discretization.run_year()
        current = discretization.annual_mean()
        history.append(discretization.global_mean())

        if not np.all(np.isfinite(current)):
            logger.warning("Spin-up stopped at year %d: non-finite temperatures", year)
            break

        last_change = float(np.max(np.abs(current - previous)))
        previous = current
        logger.debug("Spin-up year %d: change %.3e", year, last_change)

        if last_change < tol:
            logger.info("Spin-up converged after %d years", year + 1)
            return SpinUpResult(True, year + 1, last_change, np.array(history))

    logger.info("Spin-up did not converge within %d years", len(history))
    return SpinUpResult(False, len(history), last_change, np.array(history))


if __name__ == "__main__":
    from ebm_logging import setup_logging

    setup_logging(logging.INFO)
    logger = logging.getLogger("cvg_studies_base")

    mesh, model = ebm_cases.make_toy_planet(16, 9, surface=eb.LAND, albedo=0.3)
    result = spin_up(eb.Discretization(mesh, model, 48), max_years=30, tol=1e-8)
    logger.info("Global annual mean after spin-up: %.4f", result.history[-1])

    study = run_temporal_convergence_study(ebm_cases.UniformRelaxationCase())
    for n, err in zip(study.steps_per_year, study.errors):
        logger.info("%4d steps/year: %.4e", n, err)
    logger.info("Observed rates: %s", ", ".join(f"{r:.3f}" for r in study.rates))
