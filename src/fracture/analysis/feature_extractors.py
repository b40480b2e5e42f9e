"""
Feature extraction for Fracture Index scoring.

Pure functions over a window of readings: spectral-slope delta, lag-1
autocorrelation, skewness, variability, and optional wavelet and fractal
descriptors. Every function returns a finite float; non-finite intermediate
results collapse to 0.0 so nothing downstream ever sees NaN or Infinity.

All extractors except ``variability`` operate on the z-scored window.
"""

import logging
import math

import numpy as np
import pywt

from scipy import signal, stats

from fracture.analysis.window import ChannelWindows
from fracture.constants import FeatureConstants as FC
from fracture.domains.types import DomainConfig
from fracture.exceptions import InsufficientDataError
from fracture.models.features import FeatureSet

logger = logging.getLogger(__name__)

__all__ = [
    "FeatureExtractor",
    "standardize",
    "spectral_slope",
    "spectral_slope_delta",
    "lag1_autocorrelation",
    "skewness",
    "variability",
    "wavelet_energy",
    "wavelet_entropy",
    "fractal_dimension",
]


def _finite(value: float) -> float:
    """Collapse NaN/Infinity to 0.0."""
    value = float(value)
    return value if math.isfinite(value) else 0.0


def standardize(window: np.ndarray) -> np.ndarray:
    """
    Z-score a window.

    Args:
        window: 1D array of readings

    Returns:
        (window - mean) / std, or all zeros for a constant window
    """
    data = np.asarray(window, dtype=float)
    if data.size == 0:
        return data
    std = np.std(data)
    if not math.isfinite(std) or std < FC.ZERO_VARIANCE_EPSILON:
        return np.zeros_like(data)
    return (data - np.mean(data)) / std


def _slope_fit(window: np.ndarray) -> tuple[float, float]:
    """
    Log-log periodogram slope and its white-noise standard error.

    The standardized window is Hann-tapered and zero-padded to the next power
    of two. The standard error is what a white-noise window of the same
    length would give: it depends on the frequencies fitted, not on the data.
    """
    z = standardize(window)
    if z.size < 2 or not np.any(z):
        return 0.0, 0.0

    n_fft = 1 << (int(z.size) - 1).bit_length()
    freqs, power = signal.periodogram(z, window="hann", nfft=n_fft)

    # Skip DC
    freqs = freqs[1:]
    power = power[1:]
    usable = power > FC.ZERO_VARIANCE_EPSILON
    if np.count_nonzero(usable) < 2:
        return 0.0, 0.0

    log_freqs = np.log10(freqs[usable])
    slope = _finite(stats.linregress(log_freqs, np.log10(power[usable])).slope)

    # Zero-padding oversamples the spectrum by n_fft / n
    sxx = float(np.sum((log_freqs - log_freqs.mean()) ** 2))
    variance = (
        FC.LOG10_PERIODOGRAM_VARIANCE * FC.HANN_VARIANCE_INFLATION * n_fft / z.size
    )
    stderr = math.sqrt(variance / sxx) if sxx > 0 else 0.0
    return slope, stderr


def spectral_slope(window: np.ndarray) -> float:
    """
    Slope of the log-log periodogram.

    The standardized window is Hann-tapered and zero-padded to the next power
    of two before the transform. Bins with zero power are skipped.

    Args:
        window: 1D array of readings

    Returns:
        Regression slope of log10(power) against log10(frequency), or 0.0
        when fewer than two usable bins exist
    """
    return _slope_fit(window)[0]


def spectral_slope_delta(
    curr: np.ndarray,
    prev: np.ndarray,
    significance: float = FC.SLOPE_DELTA_SIGNIFICANCE,
) -> float:
    """
    Change in spectral slope between two consecutive windows.

    Slope estimates from short windows are noisy, so the difference is
    shrunk toward zero by ``significance`` combined standard errors. White
    noise therefore scores 0 while a genuine reddening of the spectrum
    survives.

    Args:
        curr: Most recent window
        prev: Window immediately preceding ``curr``
        significance: Standard errors to discount; 0 gives the raw difference

    Returns:
        Shrunk slope(curr) - slope(prev), or 0.0 if either window is shorter
        than 16 samples
    """
    if len(curr) < FC.MIN_SPECTRAL_SAMPLES or len(prev) < FC.MIN_SPECTRAL_SAMPLES:
        return 0.0

    curr_slope, curr_err = _slope_fit(curr)
    prev_slope, prev_err = _slope_fit(prev)
    delta = curr_slope - prev_slope
    floor = significance * math.hypot(curr_err, prev_err)
    return _finite(math.copysign(max(0.0, abs(delta) - floor), delta))


def lag1_autocorrelation(window: np.ndarray) -> float:
    """
    Pearson correlation between the series and its one-step-lagged self.

    Args:
        window: 1D array of readings

    Returns:
        Correlation in [-1, 1]; 0.0 for constant or too-short series
    """
    z = standardize(window)
    if z.size < FC.MIN_AUTOCORR_SAMPLES:
        return 0.0

    head = z[:-1]
    tail = z[1:]
    if np.std(head) < FC.ZERO_VARIANCE_EPSILON or np.std(tail) < FC.ZERO_VARIANCE_EPSILON:
        return 0.0

    r = np.corrcoef(head, tail)[0, 1]
    return float(np.clip(_finite(r), -1.0, 1.0))


def skewness(window: np.ndarray) -> float:
    """
    Third standardized moment.

    Args:
        window: 1D array of readings

    Returns:
        Skewness, or 0.0 for windows shorter than 3 samples or constant windows
    """
    z = standardize(window)
    if z.size < FC.MIN_SKEWNESS_SAMPLES or not np.any(z):
        return 0.0
    return _finite(stats.skew(z, bias=True))


def variability(window: np.ndarray) -> float:
    """
    Coefficient of variation of the raw (unstandardized) window.

    Args:
        window: 1D array of readings

    Returns:
        std / |mean|, or 0.0 when the mean is 0
    """
    data = np.asarray(window, dtype=float)
    if data.size == 0:
        return 0.0
    mean = float(np.mean(data))
    if abs(mean) < FC.ZERO_VARIANCE_EPSILON:
        return 0.0
    return _finite(np.std(data) / abs(mean))


def _wavelet_band_energies(window: np.ndarray) -> np.ndarray | None:
    """Energy per DWT band (approximation first), or None if too short."""
    z = standardize(window)
    if z.size < FC.MIN_WAVELET_SAMPLES or not np.any(z):
        return None

    wavelet = pywt.Wavelet(FC.WAVELET_NAME)
    level = min(pywt.dwt_max_level(z.size, wavelet.dec_len), FC.WAVELET_MAX_LEVEL)
    if level < 1:
        return None

    coeffs = pywt.wavedec(z, wavelet, level=level)
    energies = np.array([float(np.sum(c**2)) for c in coeffs])
    if not np.all(np.isfinite(energies)) or energies.sum() <= 0:
        return None
    return energies


def wavelet_energy(window: np.ndarray) -> float:
    """
    Share of signal energy carried by the DWT detail bands.

    Args:
        window: 1D array of readings

    Returns:
        Value in [0, 1]; 0.0 for short or constant windows
    """
    energies = _wavelet_band_energies(window)
    if energies is None:
        return 0.0
    return float(np.clip(_finite(energies[1:].sum() / energies.sum()), 0.0, 1.0))


def wavelet_entropy(window: np.ndarray) -> float:
    """
    Shannon entropy (bits) of the normalized DWT band energies.

    Args:
        window: 1D array of readings

    Returns:
        Non-negative entropy; 0.0 for short or constant windows
    """
    energies = _wavelet_band_energies(window)
    if energies is None:
        return 0.0
    p = energies / energies.sum()
    p = p[p > 0]
    return max(0.0, _finite(-np.sum(p * np.log2(p))))


def fractal_dimension(window: np.ndarray, k_max: int = FC.HIGUCHI_K_MAX) -> float:
    """
    Higuchi fractal dimension.

    Args:
        window: 1D array of readings
        k_max: Largest interval; capped at n / 4

    Returns:
        Dimension clamped to [1, 2]; 1.0 for short or constant windows
    """
    x = standardize(window)
    n = x.size
    k_limit = min(k_max, n // 4)
    if n < FC.MIN_FRACTAL_SAMPLES or k_limit < FC.HIGUCHI_K_MIN or not np.any(x):
        return FC.FRACTAL_DIMENSION_MIN

    log_inv_k = []
    log_length = []
    for k in range(1, k_limit + 1):
        lengths = []
        for m in range(k):
            idx = np.arange(m, n, k)
            if idx.size < 2:
                continue
            steps = idx.size - 1
            curve = np.sum(np.abs(np.diff(x[idx])))
            lengths.append(curve * (n - 1) / (steps * k) / k)
        mean_length = float(np.mean(lengths)) if lengths else 0.0
        if mean_length > 0:
            log_inv_k.append(math.log(1.0 / k))
            log_length.append(math.log(mean_length))

    if len(log_inv_k) < 2:
        return FC.FRACTAL_DIMENSION_MIN

    slope = _finite(stats.linregress(log_inv_k, log_length).slope)
    return float(np.clip(slope, FC.FRACTAL_DIMENSION_MIN, FC.FRACTAL_DIMENSION_MAX))


def _require_samples(values: np.ndarray, required: int) -> None:
    if values.size < required:
        raise InsufficientDataError(required=required, available=int(values.size))


def _split_for_slope_delta(
    values: np.ndarray, spectral_window: int
) -> tuple[np.ndarray, np.ndarray]:
    """Most recent half-window and the one before it, each up to spectral_window long."""
    half = min(values.size // 2, spectral_window)
    if half == 0:
        return values[:0], values[:0]
    return values[-half:], values[-2 * half : -half]


class FeatureExtractor:
    """
    Runs the extractor suite over an entity's channel windows.

    Per-channel features are averaged across the channels that hold at least
    ``min_samples`` readings.

    Example:
        >>> extractor = FeatureExtractor(get_domain("clinical"))
        >>> features = extractor.extract(windows)
        >>> features.autocorrelation
        0.87
    """

    def __init__(self, domain: DomainConfig):
        self.domain = domain
        self.min_samples = domain.min_samples
        self.spectral_window = domain.spectral_window

    def extract_channel(self, values: np.ndarray) -> FeatureSet:
        """
        Extract features from a single channel's readings.

        Args:
            values: Readings, oldest first

        Returns:
            FeatureSet; extractor fields are None below min_samples
        """
        try:
            _require_samples(values, self.min_samples)
        except InsufficientDataError as e:
            logger.debug(str(e))
            return FeatureSet(sample_count=int(values.size))

        curr, prev = _split_for_slope_delta(values, self.spectral_window)
        return FeatureSet(
            spectral_slope_delta=spectral_slope_delta(curr, prev),
            autocorrelation=lag1_autocorrelation(values),
            skewness=skewness(values),
            variability=variability(values),
            wavelet_energy=wavelet_energy(values) if self.domain.wavelet_enabled else None,
            wavelet_entropy=(
                wavelet_entropy(values) if self.domain.wavelet_enabled else None
            ),
            fractal_dimension=(
                fractal_dimension(values) if self.domain.fractal_enabled else None
            ),
            sample_count=int(values.size),
        )

    def extract(self, windows: ChannelWindows) -> FeatureSet:
        """
        Extract and aggregate features across the domain's channels.

        Args:
            windows: The entity's channel windows

        Returns:
            Aggregated FeatureSet listing the channels that contributed
        """
        per_channel: dict[str, FeatureSet] = {}
        max_count = 0
        for channel in self.domain.channels:
            window = windows.get(channel)
            if window is None:
                continue
            max_count = max(max_count, len(window))
            features = self.extract_channel(window.values())
            if not features.insufficient_data:
                per_channel[channel] = features

        if not per_channel:
            return FeatureSet(sample_count=max_count)

        return FeatureSet(
            spectral_slope_delta=_mean_of(per_channel, "spectral_slope_delta"),
            autocorrelation=_mean_of(per_channel, "autocorrelation"),
            skewness=_mean_of(per_channel, "skewness"),
            variability=_mean_of(per_channel, "variability"),
            wavelet_energy=_mean_of(per_channel, "wavelet_energy"),
            wavelet_entropy=_mean_of(per_channel, "wavelet_entropy"),
            fractal_dimension=_mean_of(per_channel, "fractal_dimension"),
            sample_count=max_count,
            active_channels=list(per_channel),
        )


def _mean_of(per_channel: dict[str, FeatureSet], field: str) -> float | None:
    values = [getattr(fs, field) for fs in per_channel.values()]
    present = [v for v in values if v is not None]
    if not present:
        return None
    return float(np.mean(present))
