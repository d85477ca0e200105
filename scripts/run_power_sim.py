"""
Power Simulation Sweep
======================

Runs the symmetry-metric power simulation over the default grid and writes
one tidy CSV per batch:

    output/powersim/{true|null}/batch_{NN}.csv

Usage:
    python scripts/run_power_sim.py                      # one batch, true effect
    python scripts/run_power_sim.py --null               # false-positive rate
    python scripts/run_power_sim.py --batches 4 --seed 7
"""

import sys
import argparse
import logging
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

import numpy as np

from gait_symmetry.symmetry_functions import SYMMETRY_METRICS, reflect
from gait_symmetry.powersim import power_sim, sweep_to_frame

PROJECT_ROOT = Path(__file__).parent.parent
OUTPUT_DIR   = PROJECT_ROOT / 'output' / 'powersim'

METRICS   = list(SYMMETRY_METRICS.values())
RATIOS    = reflect(np.round(np.arange(1.0, 1.31, 0.05), 2))
VARIANCES = [0.01, 0.05, 0.1, 0.15, 0.2]
NS        = [5, 10, 20, 40]
SAMPLES   = 1000


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description=__doc__.split('\n\n')[0])
    parser.add_argument('--null', action='store_true',
                        help='draw both sides from the same distribution')
    parser.add_argument('--samples', type=int, default=SAMPLES)
    parser.add_argument('--batches', type=int, default=1)
    parser.add_argument('--workers', type=int, default=None)
    parser.add_argument('--seed', type=int, default=None)
    parser.add_argument('--out', type=Path, default=OUTPUT_DIR)
    args = parser.parse_args(argv)
    if args.batches < 1:
        parser.error('--batches must be >= 1')
    return args


def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)s %(message)s')

    out_dir = args.out / ('null' if args.null else 'true')
    out_dir.mkdir(parents=True, exist_ok=True)
    rng = np.random.default_rng(args.seed)

    print(f'{len(METRICS)} metrics x {len(RATIOS)} ratios x {len(VARIANCES)} variances '
          f'x {len(NS)} group sizes, {args.samples} samples')
    print(f'Output: {out_dir}\n')

    for batch in range(1, args.batches + 1):
        data = power_sim(METRICS, RATIOS, VARIANCES, NS, args.samples,
                         null=args.null, batch=batch, workers=args.workers, rng=rng)
        frame = sweep_to_frame(data, METRICS, RATIOS, VARIANCES, NS, samples=args.samples)
        frame.insert(0, 'batch', batch)

        out_path = out_dir / f'batch_{batch:02d}.csv'
        frame.to_csv(out_path, index=False)
        print(f'[OK] Saved -> {out_path}')

    summary = (frame.groupby(['metric', 'n'])['power'].mean()
                    .unstack('n').round(3))
    print(f'\nMean power of last batch by metric and group size:\n{summary}')


if __name__ == '__main__':
    main()
