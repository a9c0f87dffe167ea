import json
import logging
import os
from datetime import datetime, timezone

import numpy as np
import pandas as pd
from matplotlib.figure import Figure

logger = logging.getLogger(__name__)

FIGURE_FORMATS = ('svg', 'pdf', 'png', 'jpg', 'jpeg')


def _optional_float(value):
    if value is None:
        return None
    value = float(value)
    return value if np.isfinite(value) else None


def build_result_record(result, expected_count=None, date=None):
    if date is None:
        date = datetime.now(timezone.utc)
    return {
        'date': date.isoformat(),
        'layer_count': int(np.asarray(result['clicks']).size),
        'confidence': _optional_float(result.get('confidence')),
        'expected_layers': int(expected_count) if expected_count is not None else None,
        'accuracy': _optional_float(result.get('accuracy')),
    }


def default_results_name(date=None):
    if date is None:
        date = datetime.now(timezone.utc)
    stamp = date.strftime('%Y-%m-%dT%H-%M-%S')
    return f'layer-analysis-{stamp}.json'


def save_results_json(result, filename=None, expected_count=None):
    record = build_result_record(result, expected_count=expected_count)
    if not filename:
        filename = default_results_name()
    with open(filename, 'w', encoding='utf-8') as fh:
        json.dump(record, fh, indent=2)
    logger.info('Saved analysis summary to %s', filename)
    return filename


def clicks_table(result):
    indices = np.asarray(result.get('click_indices', []), dtype=int)
    envelope = np.asarray(result.get('envelope', []), dtype=float)
    amplitudes = envelope[indices] if envelope.size > 0 else np.full(indices.size, np.nan)
    return pd.DataFrame({
        'layer': np.arange(1, indices.size + 1),
        'envelope_index': indices,
        'time_s': np.asarray(result['clicks'], dtype=float),
        'amplitude': amplitudes,
        'strong': np.asarray(result.get('click_is_strong', np.ones(indices.size, dtype=bool)), dtype=bool),
    })


def save_clicks_csv(result, filename):
    df = clicks_table(result)
    df.to_csv(filename, index=False)
    logger.info('Saved %d clicks to %s', len(df), filename)
    return filename


def plot_analysis(result, title=None):
    waveform = np.asarray(result['waveform'], dtype=float).reshape(-1, 2)
    clicks = np.asarray(result['clicks'], dtype=float)
    strong = np.asarray(result.get('click_is_strong', np.ones(clicks.size, dtype=bool)), dtype=bool)

    fig = Figure(figsize=(10, 3.5))
    ax = fig.add_subplot(111)
    ax.plot(waveform[:, 0], waveform[:, 1], color='#10b981', lw=1.0, label='RMS envelope')
    for t in clicks[strong]:
        ax.axvline(t, color='#f59e0b', lw=0.8, alpha=0.8)
    for t in clicks[~strong]:
        ax.axvline(t, color='#ef4444', lw=0.8, ls='--', alpha=0.8)
    ax.set_xlabel('Time (s)')
    ax.set_ylabel('Amplitude')
    if title is None:
        title = f'{clicks.size} layers, confidence {float(result.get("confidence", 0.0)):.0%}'
    ax.set_title(title)
    ax.legend(loc='upper right')
    fig.tight_layout()
    return fig


def save_figure(figure, filename):
    _, ext = os.path.splitext(filename)
    ext = ext.lower().lstrip('.')
    if ext not in FIGURE_FORMATS:
        filename = filename + '.svg'
        ext = 'svg'
    save_ext = 'jpg' if ext == 'jpeg' else ext
    figure.savefig(filename, format=save_ext)
    logger.info('Saved figure to %s', filename)
    return filename
