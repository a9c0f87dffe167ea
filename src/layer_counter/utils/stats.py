import numpy as np


def mean_std_count(arr):
    a = np.asarray(arr, dtype=float).ravel()
    if a.size > 0:
        return float(np.nanmean(a)), float(np.nanstd(a)), int(a.size)
    return np.nan, np.nan, 0


def consistency_score(arr):
    # 1 - coefficient of variation, floored at 0; zero or undefined mean scores 0
    mean, std, count = mean_std_count(arr)
    if count == 0 or not np.isfinite(mean) or mean <= 0:
        return 0.0
    return max(0.0, 1.0 - std / mean)
