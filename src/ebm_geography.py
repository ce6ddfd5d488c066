# ebm_geography.py - v1

"""
Geography and albedo tables.

File formats (one line per latitude band, north to south):

    geography: nlon digits without separators, e.g. "5555111166..."
    albedo:    nlon floating point numbers separated by whitespace

Both are returned as (nlon, nlat) arrays. Missing trailing lines leave the
corresponding bands at zero, which the model then rejects as an unknown
surface type.
"""

import logging
from pathlib import Path

import numpy as np

import ebmbase as eb

logger = logging.getLogger(__name__)


def _read_rows(filepath, nlat):
    with open(filepath) as fh:
        for lat, line in zip(range(nlat), fh):
            yield lat, line.strip()


def read_geography(filepath="The_World.dat", nlongitude=128, nlatitude=65):
    result = np.zeros((nlongitude, nlatitude), dtype=np.int8)
    nrows = 0
    for lat, line in _read_rows(filepath, nlatitude):
        if len(line) != nlongitude or not line.isdigit():
            raise eb.EBMConfigError(
                f"{filepath}: line {lat + 1} must hold {nlongitude} digits, "
                f"got {len(line)} characters."
            )
        result[:, lat] = np.frombuffer(line.encode("ascii"), dtype=np.uint8) - ord("0")
        nrows += 1

    if nrows < nlatitude:
        logger.warning("%s: only %d of %d latitude bands read", filepath, nrows, nlatitude)
    return result


def read_albedo(filepath="albedo.dat", nlongitude=128, nlatitude=65):
    result = np.zeros((nlongitude, nlatitude))
    nrows = 0
    for lat, line in _read_rows(filepath, nlatitude):
        try:
            values = np.array(line.split(), dtype=float)
        except ValueError as e:
            raise eb.EBMConfigError(f"{filepath}: line {lat + 1}: {e}") from e
        if values.shape != (nlongitude,):
            raise eb.EBMConfigError(
                f"{filepath}: line {lat + 1} must hold {nlongitude} values, "
                f"got {values.shape[0]}."
            )
        result[:, lat] = values
        nrows += 1

    if nrows < nlatitude:
        logger.warning("%s: only %d of %d latitude bands read", filepath, nrows, nlatitude)
    return result


def write_geography(filepath, geography):
    geography = np.asarray(geography, dtype=int)
    if geography.min() < 0 or geography.max() > 9:
        raise eb.EBMConfigError("Geography codes must be single digits.")
    lines = ("".join(str(v) for v in geography[:, lat]) for lat in range(geography.shape[1]))
    Path(filepath).write_text("\n".join(lines) + "\n")


def write_albedo(filepath, albedo):
    albedo = np.asarray(albedo, dtype=float)
    lines = (" ".join(f"{v:.6f}" for v in albedo[:, lat]) for lat in range(albedo.shape[1]))
    Path(filepath).write_text("\n".join(lines) + "\n")


def make_uniform_geography(nlongitude, nlatitude, surface=eb.LAND):
    if surface not in eb.SURFACE_TYPES:
        raise eb.EBMConfigError(f"Unknown surface classification {surface!r}.")
    return np.full((nlongitude, nlatitude), surface, dtype=np.int8)


def make_uniform_albedo(nlongitude, nlatitude, albedo=0.3):
    return np.full((nlongitude, nlatitude), float(albedo))
