import numpy as np
import pytest


def add_burst(x, start, length, amp=0.8):
    x[start:start + length] += amp * np.hanning(length)
    return x


def scrape_signal(fs, duration_s, peak_windows, amp=0.8, noise=0.005, seed=0):
    """Near-silent buffer with a 3-window Hann burst centred on each envelope index."""
    window = int(fs * 5 // 1000)
    n = int(round(duration_s * fs))
    x = np.random.default_rng(seed).uniform(-noise, noise, n) if noise > 0 else np.zeros(n)
    for w in peak_windows:
        add_burst(x, (w - 1) * window, 3 * window, amp=amp)
    return x


@pytest.fixture
def make_scrape():
    return scrape_signal
