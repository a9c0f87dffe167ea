import logging
import os

import numpy as np
import pandas as pd
from scipy.io import wavfile

logger = logging.getLogger(__name__)

SUPPORTED_SUFFIXES = ('.wav', '.npz', '.csv', '.xlsx')


def pcm_to_float(data):
    """Scale integer PCM to [-1, 1]; float data passes through."""
    arr = np.asarray(data)
    if arr.dtype == np.uint8:
        return (arr.astype(float) - 128.0) / 128.0
    if np.issubdtype(arr.dtype, np.integer):
        return arr.astype(float) / float(2 ** (8 * arr.dtype.itemsize - 1))
    return arr.astype(float)


def first_channel(data, recording_path=''):
    arr = np.asarray(data)
    if arr.ndim == 1:
        return arr
    if arr.ndim == 2:
        if arr.shape[1] > 1:
            logger.warning('%s has %d channels, analyzing channel 0 only',
                           recording_path or 'recording', arr.shape[1])
        return arr[:, 0]
    raise ValueError(f'Unsupported sample array shape {arr.shape}')


def fs_from_time_column(time_vec, in_ms=False):
    t = np.asarray(time_vec, dtype=float)
    t = t[~np.isnan(t)]
    if t.size < 2:
        raise ValueError('Time column needs at least two samples to derive a sample rate')
    dt = float(np.median(np.diff(t)))
    if in_ms:
        dt = dt / 1000.0
    if dt <= 0:
        raise ValueError('Time column is not increasing')
    return int(round(1.0 / dt))


def load_wav_file(file_path):
    fs, data = wavfile.read(file_path)
    samples = pcm_to_float(first_channel(data, file_path))
    return {
        'samples': samples,
        'fs': int(fs),
        'recording_path': file_path,
    }


def load_npz_file(file_path):
    npz = np.load(file_path, allow_pickle=False)
    return {
        'samples': np.asarray(first_channel(npz['samples'], file_path), dtype=float),
        'fs': int(npz['fs']),
        'recording_path': file_path,
    }


def load_table_recording_file(file_path):
    if file_path.lower().endswith('.xlsx'):
        df = pd.read_excel(file_path, engine='openpyxl')
    elif file_path.lower().endswith('.csv'):
        df = pd.read_csv(file_path)
    else:
        raise ValueError(f'Unsupported file type: {file_path}')
    if df.shape[1] < 2:
        raise ValueError(f'{file_path} needs a time column and an amplitude column')

    time_name = str(df.columns[0]).strip().lower()
    time_vec = df.iloc[:, 0].values.astype(float)
    samples = df.iloc[:, 1].values.astype(float)
    mask_valid = ~np.isnan(time_vec)
    fs = fs_from_time_column(time_vec[mask_valid], in_ms=time_name.endswith('ms'))
    return {
        'samples': samples[mask_valid],
        'fs': fs,
        'recording_path': file_path,
    }


def load_recording(recording_path):
    recording_path = os.fspath(recording_path)
    if not os.path.isfile(recording_path):
        raise FileNotFoundError(f'No recording found at {recording_path}')
    suffix = os.path.splitext(recording_path)[1].lower()
    if suffix == '.wav':
        data = load_wav_file(recording_path)
    elif suffix == '.npz':
        data = load_npz_file(recording_path)
    elif suffix in ('.csv', '.xlsx'):
        data = load_table_recording_file(recording_path)
    else:
        raise ValueError(f'Unsupported file: {recording_path} (expected one of {", ".join(SUPPORTED_SUFFIXES)})')
    logger.debug('Loaded %d samples at %d Hz from %s',
                 data['samples'].size, data['fs'], recording_path)
    return data
