import argparse
import logging
import os
import sys
from pathlib import Path

# Ensure repo root is on sys.path when running from anywhere
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from config.config_loader import load_config, get_section  # noqa: E402
from enose_fit.automated import AutomatedFitWorker  # noqa: E402
from enose_fit.data_loader import MeasurementData, load_relative_series, load_sensor_failures  # noqa: E402
from enose_fit.visualization import save_fit_plots  # noqa: E402


def _setup_logging(config, verbose: bool):
    log_cfg = get_section(config, 'logging')
    level = logging.DEBUG if verbose else getattr(logging, str(log_cfg.get('level', 'INFO')).upper(), logging.INFO)
    logging.basicConfig(level=level, format=log_cfg.get('format', '%(levelname)s %(name)s: %(message)s'))


def main():
    parser = argparse.ArgumentParser(
        description="Headless eNose curve fit: range detection → channel fits → result table"
    )
    parser.add_argument("--data", required=True,
                        help="Semicolon separated relative series (timestamp;ch1;ch2;...)")
    parser.add_argument("--failures", default=None,
                        help="Sensor failure bitstring, e.g. 0001000... (channel 1 first)")
    parser.add_argument("--out", default=str(REPO_ROOT / "output" / "curve_fit.csv"),
                        help="Output path of the result table")
    parser.add_argument("--config", default=None, help="YAML configuration file")
    parser.add_argument("--offset", type=int, default=None,
                        help="Exposition start relative to the measurement start (s)")
    parser.add_argument("--exposition", type=int, default=None,
                        help="Exposition duration (s), default: until the end of the data")
    parser.add_argument("--recovery", type=int, default=None,
                        help="Recovery window (s), default: remaining data")
    parser.add_argument("--timeout", type=float, default=None,
                        help="Timeout of the fit (s), default: 10s per channel")
    parser.add_argument("--cores", type=int, default=None,
                        help="Number of worker threads, default: all available cores")
    parser.add_argument("--plots", action="store_true",
                        help="Save a fit plot per channel next to the result table")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    args = parser.parse_args()

    config = load_config(args.config)
    _setup_logging(config, args.verbose)

    relative = load_relative_series(os.path.abspath(args.data))
    failures = load_sensor_failures(args.failures, relative.shape[1])
    data = MeasurementData(relative, failures)

    worker = AutomatedFitWorker(
        data,
        timeout=args.timeout,
        n_cores=args.cores,
        t_exposition=args.exposition,
        t_recovery=args.recovery,
        t_offset=args.offset,
        config=config,
    )
    success = worker.fit()

    out_path = Path(os.path.abspath(args.out))
    out_path.parent.mkdir(parents=True, exist_ok=True)
    worker.save(out_path)

    print("\nCurve fit summary")
    print("-----------------")
    print(f"completed: {success}")
    for result in worker.results:
        if result.fit_valid:
            print(f"ch{result.channel + 1}: tau90={result.tau90:.1f}s, f(t90)={result.f_t90:.3f}%, "
                  f"t10={result.t10_recovery:.1f}s")
        else:
            reason = "sensor failure" if result.sensor_failure else "not fitted"
            print(f"ch{result.channel + 1}: {reason}")

    if args.plots:
        paths = save_fit_plots(worker.worker, out_path.parent / "plots")
        print(f"plots: {len(paths)} saved under {out_path.parent / 'plots'}")

    print("\nResults written to:", out_path)
    return 0 if success else 1


if __name__ == "__main__":
    sys.exit(main())
