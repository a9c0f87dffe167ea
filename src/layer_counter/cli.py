"""
Command line entry point for counting print layers from a blade-scrape recording.

Example usage:
    layer-counter scrape.wav
    layer-counter scrape.wav --expected 120 --json results.json
    layer-counter scrape.wav --plot envelope.svg --clicks-csv clicks.csv
"""

import argparse
import logging
import sys

import numpy as np

from .core.detection import (
    MAX_WEAK_CLICKS,
    MAX_WIDTH_MS,
    MIN_SYMMETRY,
    NOISE_FLOOR,
    REFRACTORY_MS,
    WINDOW_MS,
    InvalidInputError,
    analyze_clicks,
)
from .utils.export import plot_analysis, save_clicks_csv, save_figure, save_results_json
from .utils.recording import load_recording
from .utils.stats import mean_std_count

logger = logging.getLogger(__name__)


def build_parser():
    parser = argparse.ArgumentParser(
        prog='layer-counter',
        description='Count 3D print layers from the clicks of a razor blade scraped along the print.',
    )
    parser.add_argument('recording', help='Recording to analyze (.wav, .npz, .csv or .xlsx)')
    parser.add_argument('--expected', type=int, default=None,
                        help='Expected layer count, used to report the relative error')
    parser.add_argument('--json', dest='json_path', default=None,
                        help='Write the summary record to this JSON file')
    parser.add_argument('--clicks-csv', default=None, help='Write the detected clicks to this CSV file')
    parser.add_argument('--plot', default=None, help='Save the envelope plot (svg, png, jpg or pdf)')

    det = parser.add_argument_group('detection')
    det.add_argument('--noise-floor', type=float, default=NOISE_FLOOR)
    det.add_argument('--window-ms', type=float, default=WINDOW_MS)
    det.add_argument('--refractory-ms', type=float, default=REFRACTORY_MS)
    det.add_argument('--max-width-ms', type=float, default=MAX_WIDTH_MS)
    det.add_argument('--min-symmetry', type=float, default=MIN_SYMMETRY)
    det.add_argument('--max-weak-clicks', type=int, default=MAX_WEAK_CLICKS)

    parser.add_argument('-v', '--verbose', action='store_true', help='Enable debug logging')
    return parser


def print_summary(recording_path, res):
    clicks = np.asarray(res['clicks'])
    n_strong = int(np.sum(res['click_is_strong']))
    print('\n' + '=' * 50)
    print('LAYER COUNT')
    print('=' * 50)
    print(f'Recording: {recording_path}')
    print(f'Duration: {res["duration"]:.2f}s')
    print(f'Layers detected: {clicks.size} ({n_strong} strong, {clicks.size - n_strong} weak)')
    print(f'Confidence: {res["confidence"]:.1%}')
    if clicks.size > 1:
        mean, std, _ = mean_std_count(np.diff(clicks))
        print(f'Click interval: {mean:.3f}s +/- {std:.3f}s')
    if res['accuracy'] is not None:
        print(f'Deviation from expected: {res["accuracy"]:.1%}')
    print('=' * 50)


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    try:
        rec = load_recording(args.recording)
        res = analyze_clicks(
            rec['samples'], rec['fs'],
            expected_count=args.expected,
            noise_floor=args.noise_floor,
            window_ms=args.window_ms,
            refractory_ms=args.refractory_ms,
            max_width_ms=args.max_width_ms,
            min_symmetry=args.min_symmetry,
            max_weak_clicks=args.max_weak_clicks,
        )
    except (InvalidInputError, ValueError, FileNotFoundError) as e:
        logger.error('Analysis failed: %s', e)
        return 2

    print_summary(rec['recording_path'], res)
    if args.json_path:
        save_results_json(res, args.json_path, expected_count=args.expected)
    if args.clicks_csv:
        save_clicks_csv(res, args.clicks_csv)
    if args.plot:
        save_figure(plot_analysis(res), args.plot)
    return 0


if __name__ == '__main__':
    sys.exit(main())
