import logging

import numpy as np

from ..utils.stats import consistency_score

NOISE_FLOOR = 0.01
WINDOW_MS = 5.0
DISPLAY_STRIDE = 5
REFRACTORY_MS = 80.0
MAX_WIDTH_MS = 20.0
MIN_SYMMETRY = 0.7
MAX_WEAK_CLICKS = 3
SYMMETRY_SPAN = 5
PERCENTILE = 0.95
PERCENTILE_GAIN = 1.5
MEAN_GAIN = 3.0
AMPLITUDE_WEIGHT = 0.6
TIMING_WEIGHT = 0.4

logger = logging.getLogger(__name__)


class InvalidInputError(ValueError):
    """Raised when a buffer or its parameters cannot be analyzed."""


def window_size_for(fs, window_ms=WINDOW_MS):
    return int(np.floor(float(fs) * float(window_ms) / 1000.0))


def denoise(samples, noise_floor=NOISE_FLOOR):
    x = np.asarray(samples, dtype=float)
    return np.where(np.abs(x) < noise_floor, 0.0, x)


def compute_envelope(samples, fs, window_ms=WINDOW_MS, display_stride=DISPLAY_STRIDE):
    """RMS envelope over non-overlapping windows plus a strided display trace.

    The trailing partial window is dropped. Returns
    ``(envelope, waveform, window_size)`` where ``waveform`` is an ``(N, 2)``
    array of ``(time_s, amplitude)`` rows taken every ``display_stride``
    envelope values.
    """
    x = np.asarray(samples, dtype=float).ravel()
    window_size = window_size_for(fs, window_ms)
    if window_size < 1:
        raise InvalidInputError(f'Sample rate {fs} gives an empty analysis window')
    n_windows = x.size // window_size
    blocks = x[:n_windows * window_size].reshape(n_windows, window_size)
    envelope = np.sqrt(np.mean(blocks * blocks, axis=1)) if n_windows > 0 else np.zeros(0, dtype=float)

    idx = np.arange(0, n_windows, max(1, int(display_stride)))
    waveform = np.column_stack([idx * window_size / float(fs), envelope[idx]])
    return envelope, waveform, window_size


def dynamic_threshold(envelope, start, end):
    segment = np.sort(np.array(envelope[start:end], dtype=float), kind='stable')
    if segment.size == 0:
        return np.inf
    percentile = segment[int(np.floor(segment.size * PERCENTILE))]
    return max(percentile * PERCENTILE_GAIN, float(np.mean(segment)) * MEAN_GAIN)


def threshold_bounds(i, n, width):
    start = max(0, int(np.floor(i - width / 2.0)))
    end = min(n, int(np.floor(i + width / 2.0)))
    return start, end


def peak_width(envelope, peak_idx):
    half_height = envelope[peak_idx] / 2.0
    left = 0
    j = peak_idx
    while j >= 0 and envelope[j] > half_height:
        left += 1
        j -= 1
    right = 0
    j = peak_idx
    while j < len(envelope) and envelope[j] > half_height:
        right += 1
        j += 1
    return left + right


def peak_symmetry(envelope, peak_idx, width):
    span = min(int(width) // 2, SYMMETRY_SPAN)
    n = len(envelope)
    left_sum = 0.0
    right_sum = 0.0
    for k in range(1, span + 1):
        if peak_idx - k >= 0:
            left_sum += envelope[peak_idx - k]
        if peak_idx + k < n:
            right_sum += envelope[peak_idx + k]
    hi = max(left_sum, right_sum)
    if hi == 0:
        return 0.0
    return min(left_sum, right_sum) / hi


def refractory_windows(fs, window_size, refractory_ms=REFRACTORY_MS):
    # ceil so accepted clicks are never closer than the refractory period
    refractory_samples = int(np.floor(float(fs) * refractory_ms / 1000.0))
    return max(1, -(-refractory_samples // int(window_size)))


def max_width_windows(fs, window_size, max_width_ms=MAX_WIDTH_MS):
    return int(np.floor(float(fs) * max_width_ms / 1000.0)) // int(window_size)


def find_clicks(envelope, fs, window_size,
                refractory_ms=REFRACTORY_MS, max_width_ms=MAX_WIDTH_MS,
                min_symmetry=MIN_SYMMETRY, max_weak_clicks=MAX_WEAK_CLICKS):
    env = np.asarray(envelope, dtype=float).ravel()
    n = env.size
    min_distance = refractory_windows(fs, window_size, refractory_ms)
    max_width = max_width_windows(fs, window_size, max_width_ms)
    threshold_width = n // 10

    indices = []
    strong = []
    last_click = -min_distance
    consecutive_weak = 0
    for i in range(1, n - 1):
        if not (env[i] > env[i - 1] and env[i] > env[i + 1]):
            continue
        if i - last_click < min_distance:
            continue
        start, end = threshold_bounds(i, n, threshold_width)
        if not env[i] > dynamic_threshold(env, start, end):
            continue

        width = peak_width(env, i)
        symmetry = peak_symmetry(env, i, width)
        if width <= max_width and symmetry > min_symmetry:
            consecutive_weak = 0
            indices.append(i)
            strong.append(True)
            last_click = i
            continue

        consecutive_weak += 1
        if consecutive_weak <= max_weak_clicks:
            indices.append(i)
            strong.append(False)
            last_click = i

    indices = np.asarray(indices, dtype=int)
    times = indices * int(window_size) / float(fs)
    return {
        'click_indices': indices,
        'clicks': times,
        'click_is_strong': np.asarray(strong, dtype=bool),
        'min_distance': min_distance,
        'max_width': max_width,
    }


def score_clicks(click_times, envelope, fs, window_size):
    """Blend amplitude consistency and timing regularity into one score.

    Returns ``(confidence, amplitude_consistency, timing_regularity)``. An
    empty click list, or clicks whose mean amplitude is zero, score 0.
    """
    times = np.asarray(click_times, dtype=float).ravel()
    env = np.asarray(envelope, dtype=float).ravel()
    if times.size == 0:
        return 0.0, 0.0, 0.0
    idx = np.rint(times * float(fs) / float(window_size)).astype(int)
    amplitudes = env[np.clip(idx, 0, env.size - 1)]
    if float(np.mean(amplitudes)) <= 0:
        return 0.0, 0.0, 0.0

    amplitude_consistency = consistency_score(amplitudes)
    if times.size < 2:
        timing_regularity = 1.0
    else:
        timing_regularity = consistency_score(np.diff(times))
    confidence = AMPLITUDE_WEIGHT * amplitude_consistency + TIMING_WEIGHT * timing_regularity
    return float(np.clip(confidence, 0.0, 1.0)), amplitude_consistency, timing_regularity


def _expected_count(expected):
    try:
        value = float(expected)
    except (TypeError, ValueError):
        raise InvalidInputError(f'Invalid expected count: {expected!r}')
    if not np.isfinite(value) or value != int(value) or value <= 0:
        raise InvalidInputError(f'Expected count must be a positive integer, got {expected!r}')
    return int(value)


def compute_accuracy(detected, expected):
    expected = _expected_count(expected)
    return abs(int(detected) - expected) / float(expected)


def _validate(samples, fs, window_ms):
    x = np.asarray(samples, dtype=float)
    if x.ndim != 1:
        raise InvalidInputError(f'Expected a mono buffer, got shape {x.shape}')
    if x.size == 0:
        raise InvalidInputError('Sample buffer is empty')
    if not np.all(np.isfinite(x)):
        raise InvalidInputError('Sample buffer contains non-finite values')
    try:
        fs_val = float(fs)
    except (TypeError, ValueError):
        raise InvalidInputError(f'Invalid sample rate: {fs!r}')
    if not np.isfinite(fs_val) or fs_val <= 0:
        raise InvalidInputError(f'Sample rate must be positive, got {fs}')
    window_size = window_size_for(fs_val, window_ms)
    if window_size < 1:
        raise InvalidInputError(f'Sample rate {fs} gives an empty analysis window')
    if x.size < window_size:
        raise InvalidInputError(
            f'Buffer of {x.size} samples is shorter than one {window_size}-sample window')
    return x, fs_val


def analyze_clicks(samples, fs, expected_count=None,
                   noise_floor=NOISE_FLOOR, window_ms=WINDOW_MS,
                   refractory_ms=REFRACTORY_MS, max_width_ms=MAX_WIDTH_MS,
                   min_symmetry=MIN_SYMMETRY, max_weak_clicks=MAX_WEAK_CLICKS,
                   display_stride=DISPLAY_STRIDE):
    x, fs_val = _validate(samples, fs, window_ms)
    if expected_count is not None:
        expected_count = _expected_count(expected_count)

    denoised = denoise(x, noise_floor=noise_floor)
    envelope, waveform, window_size = compute_envelope(
        denoised, fs_val, window_ms=window_ms, display_stride=display_stride)
    res = find_clicks(envelope, fs_val, window_size,
                      refractory_ms=refractory_ms, max_width_ms=max_width_ms,
                      min_symmetry=min_symmetry, max_weak_clicks=max_weak_clicks)
    confidence, amp_consistency, timing_regularity = score_clicks(
        res['clicks'], envelope, fs_val, window_size)

    accuracy = None
    if expected_count is not None:
        accuracy = compute_accuracy(res['clicks'].size, expected_count)

    logger.debug('Detected %d clicks (%d strong) in %.2fs, confidence %.3f',
                 res['clicks'].size, int(np.sum(res['click_is_strong'])),
                 x.size / fs_val, confidence)

    res.update({
        'confidence': confidence,
        'amplitude_consistency': amp_consistency,
        'timing_regularity': timing_regularity,
        'accuracy': accuracy,
        'waveform': waveform,
        'envelope': envelope,
        'window_size': window_size,
        'fs': fs_val,
        'duration': x.size / fs_val,
    })
    return res
