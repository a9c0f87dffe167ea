import numpy as np
import pytest

from layer_counter.core.detection import (
    InvalidInputError,
    analyze_clicks,
    compute_accuracy,
    compute_envelope,
    denoise,
    dynamic_threshold,
    find_clicks,
    peak_symmetry,
    peak_width,
    refractory_windows,
    score_clicks,
)


def test_denoise_zeroes_samples_below_floor():
    x = np.array([0.005, -0.02, 0.009, -0.009, -0.01, 0.5])
    y = denoise(x)
    assert y.tolist() == [0.0, -0.02, 0.0, 0.0, -0.01, 0.5]
    assert x[0] == 0.005


def test_envelope_drops_partial_window_and_strides_display():
    fs = 8000
    x = np.full(1010, 0.5)
    env, waveform, window_size = compute_envelope(x, fs)
    assert window_size == 40
    assert env.size == 25
    assert np.allclose(env, 0.5)
    assert waveform.shape == (5, 2)
    assert np.allclose(waveform[:, 0], [0.0, 0.025, 0.05, 0.075, 0.1])


def test_dynamic_threshold_uses_percentile_and_mean():
    env = np.array([1.0] * 10 + [10.0] + [1.0] * 9)
    before = env.copy()
    assert dynamic_threshold(env, 0, env.size) == pytest.approx(15.0)
    assert np.array_equal(env, before)
    assert dynamic_threshold(np.ones(50), 0, 50) == pytest.approx(3.0)
    assert dynamic_threshold(env, 5, 5) == np.inf


def test_peak_shape_descriptors():
    env = np.array([0.0, 0.2, 0.6, 1.0, 0.6, 0.2, 0.0])
    assert peak_width(env, 3) == 4
    assert peak_symmetry(env, 3, 4) == pytest.approx(1.0)

    skewed = np.array([0.0, 0.0, 0.0, 1.0, 0.9, 0.8, 0.7])
    assert peak_symmetry(skewed, 3, peak_width(skewed, 3)) == pytest.approx(0.0)
    assert peak_symmetry(np.array([0.0, 1.0, 0.0]), 1, 2) == 0.0


def test_weak_clicks_are_capped_until_a_strong_click():
    fs, window_size = 48000, 240
    env = np.zeros(2000)
    for i in (100, 200, 300, 400, 600):
        env[i] = 1.0
    env[499:502] = [0.4, 1.0, 0.4]

    res = find_clicks(env, fs, window_size)
    assert res['click_indices'].tolist() == [100, 200, 300, 500, 600]
    assert res['click_is_strong'].tolist() == [False, False, False, True, False]
    assert np.allclose(res['clicks'], res['click_indices'] * window_size / fs)


def test_silence_yields_no_clicks():
    for fs in (8000, 44100, 48000):
        res = analyze_clicks(np.zeros(fs), fs)
        assert res['clicks'].size == 0
        assert res['confidence'] == 0.0


def test_single_synthetic_click(make_scrape):
    fs = 44100
    x = make_scrape(fs, 2.0, [201])
    res = analyze_clicks(x, fs)
    assert res['clicks'].size == 1
    true_center = (200 * 220 + 330) / fs
    assert abs(res['clicks'][0] - true_center) <= res['window_size'] / fs
    assert res['confidence'] > 0.5


def test_evenly_spaced_clicks_score_near_one(make_scrape):
    fs = 48000
    x = make_scrape(fs, 3.0, [100, 200, 300, 400, 500])
    res = analyze_clicks(x, fs)
    assert np.allclose(res['clicks'], [0.5, 1.0, 1.5, 2.0, 2.5])
    assert res['click_is_strong'].all()
    assert res['timing_regularity'] == pytest.approx(1.0, abs=1e-9)
    assert res['amplitude_consistency'] == pytest.approx(1.0, abs=1e-2)
    assert res['confidence'] == pytest.approx(1.0, abs=1e-2)
    assert res['accuracy'] is None


def test_close_bursts_collapse_to_one_click(make_scrape):
    fs = 48000
    x = make_scrape(fs, 2.0, [100, 108])
    res = analyze_clicks(x, fs)
    assert res['clicks'].size <= 1


def test_click_spacing_and_confidence_bounds(make_scrape):
    fs = 44100
    peaks = np.sort(np.random.default_rng(3).choice(np.arange(20, 1180), 40, replace=False))
    x = make_scrape(fs, 6.0, peaks, noise=0.02, seed=7)
    res = analyze_clicks(x, fs)
    min_gap = refractory_windows(fs, res['window_size']) * res['window_size'] / fs
    assert min_gap >= 0.08
    if res['clicks'].size > 1:
        assert np.all(np.diff(res['clicks']) >= min_gap - 1e-12)
    assert np.all((res['clicks'] >= 0) & (res['clicks'] <= res['duration']))
    assert 0.0 <= res['confidence'] <= 1.0


def test_analysis_is_deterministic(make_scrape):
    fs = 44100
    x = make_scrape(fs, 3.0, [50, 150, 260, 390], noise=0.02, seed=11)
    a = analyze_clicks(x, fs, expected_count=4)
    b = analyze_clicks(x, fs, expected_count=4)
    assert np.array_equal(a['clicks'], b['clicks'])
    assert np.array_equal(a['waveform'], b['waveform'])
    assert a['confidence'] == b['confidence']
    assert a['accuracy'] == b['accuracy']


def test_accuracy_is_relative_count_error(make_scrape):
    assert compute_accuracy(8, 10) == 0.2
    assert compute_accuracy(10, 10) == 0.0

    fs = 48000
    res = analyze_clicks(make_scrape(fs, 3.0, [100, 200, 300, 400, 500]), fs, expected_count=10)
    assert res['accuracy'] == pytest.approx(0.5)


def test_score_clicks_degenerate_cases():
    env = np.zeros(100)
    assert score_clicks([], env, 8000, 40) == (0.0, 0.0, 0.0)
    assert score_clicks([0.05, 0.25], env, 8000, 40) == (0.0, 0.0, 0.0)

    env[10] = 0.5
    confidence, amp, timing = score_clicks([10 * 40 / 8000], env, 8000, 40)
    assert (confidence, amp, timing) == (1.0, 1.0, 1.0)


@pytest.mark.parametrize('samples, fs', [
    ([], 44100),
    (np.zeros(1000), 0),
    (np.zeros(1000), -8000),
    (np.zeros(1000), 100),
    (np.zeros(100), 44100),
    (np.zeros((1000, 2)), 44100),
    (np.array([0.0, np.nan] * 500), 8000),
])
def test_invalid_input_is_rejected(samples, fs):
    with pytest.raises(InvalidInputError):
        analyze_clicks(samples, fs)


def test_score_clicks_clamps_high_variation_to_zero():
    env = np.zeros(200)
    idx = np.array([10, 20, 30, 150])
    env[idx] = [0.01, 0.01, 0.01, 1.0]
    confidence, amp, timing = score_clicks(idx * 40 / 8000, env, 8000, 40)
    assert amp == 0.0
    assert timing == 0.0
    assert confidence == 0.0


def test_five_ms_bursts_only_pass_as_weak_clicks():
    # single-window bursts have no neighbour energy, so symmetry is 0
    fs, window_size = 44100, 220
    x = np.random.default_rng(5).uniform(-0.005, 0.005, 3 * fs)
    for w in (100, 200, 300, 400, 500):
        x[w * window_size:(w + 1) * window_size] += 0.8 * np.hanning(window_size)

    res = analyze_clicks(x, fs)
    assert res['click_indices'].tolist() == [100, 200, 300]
    assert not res['click_is_strong'].any()


@pytest.mark.parametrize('expected', [0, -3, 2.5, float('nan'), 'ten'])
def test_expected_count_must_be_a_positive_integer(expected):
    with pytest.raises(InvalidInputError):
        analyze_clicks(np.zeros(8000), 8000, expected_count=expected)
    with pytest.raises(InvalidInputError):
        compute_accuracy(8, expected)


def test_integral_float_expected_count_is_accepted():
    assert compute_accuracy(8, 10.0) == 0.2
