import numpy as np
import scipy.sparse as sp

from cvg_studies_base import calculate_observed_rates, RateStatus
from typing import List, Literal


def observed_rates_report(
    errors: List[float],
    *,
    expected_rate: float = 2.0,
    tolerance: float = 0.1,
    cmp_type: Literal["least", "equal"] = "least",
    refinement_factor: float = 2.0,
    halt_print: bool = False,
) -> List[float]:
    """
    Calculates observed convergence rates using a 3-point formula, reports
    them and asserts on the final (finest) one.

    Args:
        errors: Errors at successive refinement levels, coarsest first.
        expected_rate: The expected convergence rate (default: 2.0).
        tolerance: Tolerance for comparing the observed rate with the expected one.
        cmp_type: 'equal' for observed rate == expected rate, 'least' for
            observed rate >= expected rate - tolerance.
        halt_print: If True, nothing is printed.

    Returns:
        The observed rates (nan where not computable).
    """
    if cmp_type not in ["equal", "least"]:
        raise ValueError(f"cmp_type must be 'equal' or 'least', not {cmp_type}")

    def cond_print(*args):
        if not halt_print:
            print(*args)

    rates_with_status = calculate_observed_rates(errors, refinement_factor)
    cond_print("\nObserved Rates (3-point formula):")
    for k, (rate, status) in enumerate(rates_with_status):
        cond_print(f"    Levels {k},{k+1},{k+2}: {rate:.3f} ({status})")

    final_rate, final_status = rates_with_status[-1]
    assert final_status == RateStatus.OK, f"Final rate status: {final_status}"

    if cmp_type == "least":
        assert (
            final_rate >= expected_rate - tolerance
        ), f"Observed rate {final_rate:.3f} not at least {expected_rate:.1f}"
    else:
        assert np.isclose(
            final_rate, expected_rate, atol=tolerance
        ), f"Observed rate {final_rate:.3f} not close to expected {expected_rate:.1f}"

    return [rate for (rate, _) in rates_with_status]


def same_sparse(a, b) -> bool:
    """
    Exact (bitwise) equality of two sparse matrices.
    """
    if a.shape != b.shape:
        return False
    diff = sp.csr_matrix(a) != sp.csr_matrix(b)
    return diff.nnz == 0
