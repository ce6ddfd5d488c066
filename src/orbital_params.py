# orbital_params.py - v1

"""
Orbital elements of the Earth as truncated harmonic series (Berger 1978).

Eccentricity, obliquity and longitude of perihelion are given for any
calendar year, with 1950 AD as the reference epoch. The amplitudes, mean
rates and phases are the higher accuracy values published by Gary Russell
(https://data.giss.nasa.gov/modelE/ar5plots/srorbpar.html) for the tables of

    Berger, A. (1978). Long-Term Variations of Daily Insolation and
    Quaternary Climatic Changes. J. Atmos. Sci., 35, 2362-2367.

Units: amplitudes in arcsec (obliquity, perihelion) or dimensionless
(eccentricity), mean rates in arcsec/year, phases in degrees.
"""

from typing import NamedTuple, Tuple

import numpy as np

REFERENCE_EPOCH = 1950

# Obliquity constant term of Berger's Eqn. 1 [deg]
EPSILON_STAR = 23.320556
# General precession in longitude [arcsec/year] and its phase [deg], Eqn. 6
PSI_TILDE = 50.439273
ZETA = 3.392506


class HarmonicSeries(NamedTuple):
    amplitude: np.ndarray
    mean_rate: np.ndarray
    phase: np.ndarray

    @classmethod
    def from_table(cls, *, amplitude, mean_rate, phase):
        arrays = []
        for column in (amplitude, mean_rate, phase):
            arr = np.array(column, dtype=float)
            arr.setflags(write=False)
            arrays.append(arr)
        assert arrays[0].shape == arrays[1].shape == arrays[2].shape
        return cls(*arrays)

    @property
    def num_terms(self):
        return self.amplitude.shape[0]

    def arguments(self, year):
        """
        arg_i = (rate_i/3600)(year - 1950) pi/180 + phase_i pi/180, in radians.

        A scalar year gives shape (nterms,); an array of years gives
        shape year.shape + (nterms,).
        """
        dyear = np.asarray(year, dtype=float)[..., np.newaxis] - REFERENCE_EPOCH
        return np.deg2rad(self.mean_rate / 3600.0) * dyear + np.deg2rad(self.phase)


class OrbitalElements(NamedTuple):
    eccentricity: float
    obliquity: float  # [rad]
    perihelion: float  # longitude of perihelion [rad]


# Values of 1950 AD used as defaults by the insolation/forcing code.
REFERENCE_ORBIT_1950 = OrbitalElements(
    eccentricity=0.016740, obliquity=0.409253, perihelion=1.783037
)


# Table 4 (Berger 1978): M, g, beta
ECCENTRICITY_SERIES = HarmonicSeries.from_table(
    amplitude=[0.01860798, 0.01627522, -0.01300660, 0.00988829, -0.00336700,
        0.00333077, -0.00235400, 0.00140015, 0.00100700, 0.00085700,
        0.00064990, 0.00059900, 0.00037800, -0.00033700, 0.00027600,
        0.00018200, -0.00017400, -0.00012400, 0.00001250],
    mean_rate=[4.2072050, 7.3460910, 17.8572630, 17.2205460, 16.8467330,
        5.1990790, 18.2310760, 26.2167580, 6.3591690, 16.2100160,
        3.0651810, 16.5838290, 18.4939800, 6.1909530, 18.8677930,
        17.4255670, 6.1860010, 18.4174410, 0.6678630],
    phase=[28.620089, 193.788772, 308.307024, 320.199637, 279.376984,
        87.195000, 349.129677, 128.443387, 154.143880, 291.269597,
        114.860583, 332.092251, 296.414411, 145.769910, 337.237063,
        152.092288, 126.839891, 210.667199, 72.108838],
)

# Table 1 (Berger 1978): A, f, delta
OBLIQUITY_SERIES = HarmonicSeries.from_table(
    amplitude=[-2462.2214466, -857.3232075, -629.3231835, -414.2804924, -311.7632587,
        308.9408604, -162.5533601, -116.1077911, 101.1189923, -67.6856209,
        24.9079067, 22.5811241, -21.1648355, -15.6549876, 15.3936813,
        14.6660938, -11.7273029, 10.2742696, 6.4914588, 5.8539148,
        -5.4872205, -5.4290191, 5.160957, 5.0786314, -4.0735782,
        3.7227167, 3.3971932, -2.8347004, -2.6550721, -2.5717867,
        -2.4712188, 2.462541, 2.2464112, -2.0755511, -1.9713669,
        -1.8813061, -1.8468785, 1.8186742, 1.7601888, -1.5428851,
        1.4738838, -1.4593669, 1.4192259, -1.181898, 1.1756474,
        -1.1316126, 1.0896928],
    mean_rate=[31.609974, 32.620504, 24.172203, 31.983787, 44.828336,
        30.973257, 43.668246, 32.246691, 30.599444, 42.681324,
        43.836462, 47.439436, 63.219948, 64.230478, 1.01053,
        7.437771, 55.782177, 0.373813, 13.218362, 62.583231,
        63.593761, 76.43831, 45.815258, 8.448301, 56.792707,
        49.747842, 12.058272, 75.27822, 65.241008, 64.604291,
        1.647247, 7.811584, 12.207832, 63.856665, 56.15599,
        77.44884, 6.801054, 62.209418, 20.656133, 48.344406,
        55.14546, 69.000539, 11.07135, 74.291298, 11.047742,
        0.636717, 12.844549],
    phase=[251.9025, 280.8325, 128.3057, 292.7252, 15.3747,
        263.7951, 308.4258, 240.0099, 222.9725, 268.7809,
        316.7998, 319.6024, 143.805, 172.7351, 28.93,
        123.5968, 20.2082, 40.8226, 123.4722, 155.6977,
        184.6277, 267.2772, 55.0196, 152.5268, 49.1382,
        204.6609, 56.5233, 200.3284, 201.6651, 213.5577,
        17.0374, 164.4194, 94.5422, 131.9124, 61.0309,
        296.2073, 135.4894, 114.875, 247.0691, 256.6114,
        32.1008, 143.6804, 16.8784, 160.6835, 27.5932,
        348.1074, 82.6496],
)

# Table 5 (Berger 1978): F, f', delta'
PERIHELION_SERIES = HarmonicSeries.from_table(
    amplitude=[7391.022589, 2555.1526947, 2022.7629188, -1973.6517951, 1240.2321818,
        953.8679112, -931.7537108, 872.3795383, 606.3544732, -496.0274038,
        456.9608039, 346.946232, -305.8412902, 249.6173246, -199.10272,
        191.0560889, -175.2936572, 165.9068833, 161.1285917, 139.7878093,
        -133.5228399, 117.0673811, 104.6907281, 95.3227476, 86.7824524,
        86.0857729, 70.5893698, -69.9719343, -62.5817473, 61.5450059,
        -57.9364011, 57.1899832, -57.0236109, -54.2119253, 53.2834147,
        52.1223575, -49.0059908, -48.3118757, -45.4191685, -42.235792,
        -34.7971099, 34.4623613, -33.8356643, 33.6689362, -31.2521586,
        -30.8798701, 28.4640769, -27.1960802, 27.0860736, -26.3437456,
        24.725374, 24.6732126, 24.4272733, 24.0127327, 21.7150294,
        -21.5375347, 18.1148363, -16.9603104, -16.1765215, 15.5567653,
        15.4846529, 15.2150632, 14.5047426, -14.3873316, 13.1351419,
        12.8776311, 11.9867234, 11.9385578, 11.7030822, 11.6018181,
        -11.2617293, -10.4664199, 10.433397, -10.2377466, 10.1934446,
        -10.1280191, 10.0289441, -10.0034259],
    mean_rate=[31.609974, 32.620504, 24.172203, 0.636717, 31.983787,
        3.138886, 30.973257, 44.828336, 0.991874, 0.373813,
        43.668246, 32.246691, 30.599444, 2.147012, 10.511172,
        42.681324, 13.650058, 0.986922, 9.874455, 13.013341,
        0.262904, 0.004952, 1.142024, 63.219948, 0.205021,
        2.151964, 64.230478, 43.836462, 47.439436, 1.384343,
        7.437771, 18.829299, 9.500642, 0.431696, 1.16009,
        55.782177, 12.639528, 1.155138, 0.168216, 1.647247,
        10.884985, 5.610937, 12.658184, 1.01053, 1.983748,
        14.023871, 0.560178, 1.273434, 12.021467, 62.583231,
        63.593761, 76.43831, 4.28091, 13.218362, 17.818769,
        8.359495, 56.792707, 8.448301, 1.978796, 8.863925,
        0.186365, 8.996212, 6.771027, 45.815258, 12.002811,
        75.27822, 65.241008, 18.870667, 22.009553, 64.604291,
        11.498094, 0.578834, 9.237738, 49.747842, 2.147012,
        1.196895, 2.133898, 0.173168],
    phase=[251.9025, 280.8325, 128.3057, 348.1074, 292.7252,
        165.1686, 263.7951, 15.3747, 58.5749, 40.8226,
        308.4258, 240.0099, 222.9725, 106.5937, 114.5182,
        268.7809, 279.6869, 39.6448, 126.4108, 291.5795,
        307.2848, 18.93, 273.7596, 143.805, 191.8927,
        125.5237, 172.7351, 316.7998, 319.6024, 69.7526,
        123.5968, 217.6432, 85.5882, 156.2147, 66.9489,
        20.2082, 250.7568, 48.0188, 8.3739, 17.0374,
        155.3409, 94.1709, 221.112, 28.93, 117.1498,
        320.5095, 262.3602, 336.2148, 233.0046, 155.6977,
        184.6277, 267.2772, 78.9281, 123.4722, 188.7132,
        180.1364, 49.1382, 152.5268, 98.2198, 97.4808,
        221.5376, 168.2438, 161.1199, 55.0196, 262.6495,
        200.3284, 201.6651, 294.6547, 99.8233, 213.5577,
        154.1631, 232.7153, 138.3034, 204.6609, 106.5938,
        250.4676, 332.3345, 27.3039],
)


def _as_output(value):
    # 0-d arrays come back as plain floats
    if np.ndim(value) == 0:
        return float(value)
    return value


def e_sincos_pi(year) -> Tuple:
    """
    Components (e sin(pi), e cos(pi)) of the eccentricity vector, Eqn. 4.
    """
    series = ECCENTRICITY_SERIES
    arg = series.arguments(year)
    e_sin_pi = np.sum(series.amplitude * np.sin(arg), axis=-1)
    e_cos_pi = np.sum(series.amplitude * np.cos(arg), axis=-1)
    return _as_output(e_sin_pi), _as_output(e_cos_pi)


def eccentricity(year):
    e_sin_pi, e_cos_pi = e_sincos_pi(year)
    return _as_output(np.hypot(e_sin_pi, e_cos_pi))


def obliquity(year):
    """
    Obliquity in radians, Eqn. 1 of Berger (1978).
    """
    series = OBLIQUITY_SERIES
    arg = series.arguments(year)
    eps = EPSILON_STAR + np.sum(series.amplitude / 3600.0 * np.cos(arg), axis=-1)
    return _as_output(np.deg2rad(eps))


def perihelion(year):
    """
    Longitude of perihelion in radians, reduced to [0, 2pi). Eqn. 6 of
    Berger (1978).
    """
    series = PERIHELION_SERIES
    pi_ = np.arctan2(*e_sincos_pi(year))
    dyear = np.asarray(year, dtype=float) - REFERENCE_EPOCH
    psi = (
        PSI_TILDE / 3600.0 * dyear
        + ZETA
        + np.sum(series.amplitude / 3600.0 * np.sin(series.arguments(year)), axis=-1)
    )
    return _as_output(np.mod(pi_ + np.deg2rad(psi), 2.0 * np.pi))


def orbital_elements(year) -> OrbitalElements:
    return OrbitalElements(
        eccentricity=eccentricity(year),
        obliquity=obliquity(year),
        perihelion=perihelion(year),
    )
