"""
CLI entry point for the pore flow batch pipeline
"""

import argparse
import sys
import logging
from pathlib import Path

def setup_logging(verbose=False, log_file='poreflow.log'):
    """Setup logging configuration"""
    level = logging.DEBUG if verbose else logging.INFO
    format_str = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

    logging.basicConfig(
        level=level,
        format=format_str,
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(log_file)
        ]
    )

def build_parser():
    parser = argparse.ArgumentParser(
        prog="poreflow",
        description="Pore microstructure flow simulation batch",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Samples 1..50 with the packaged defaults, tables in ./Data
  python -m poreflow run --start 1 --finish 50

  # Custom configuration and directories
  python -m poreflow run --start 10 --finish 20 --config my_run.json --data-dir Data --output-dir results
        """
    )

    subparsers = parser.add_subparsers(dest='command', help='Command')

    run_parser = subparsers.add_parser('run', help='Simulate a range of samples')
    run_parser.add_argument('--start', type=int, help='First sample index (default: batch.start)')
    run_parser.add_argument('--finish', type=int, help='Last sample index, inclusive (default: batch.finish)')
    run_parser.add_argument('--config', help='Configuration file (default: configs/default.json)')
    run_parser.add_argument('--data-dir', help='Directory holding pore_bodies_<n>/pore_throats_<n> tables')
    run_parser.add_argument('--output-dir', help='Directory for simulation_<n>.csv results')
    run_parser.add_argument('--work-dir', help='Directory for per-sample OpenFOAM cases')
    run_parser.add_argument('--keep-case', action='store_true', help='Keep case directories after each sample')
    run_parser.add_argument('--verbose', '-v', action='store_true', help='Verbose output')

    return parser

def main(argv=None):
    """Main CLI entry point"""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    setup_logging(args.verbose)
    logger = logging.getLogger('poreflow.cli')

    from .config_manager import ConfigManager
    from .batch import run_batch

    try:
        config_manager = ConfigManager(Path(args.config) if args.config else None)
    except ValueError as e:
        logger.error(f"❌ {e}")
        return 1

    config_manager.set_batch_range(args.start, args.finish)
    for key, value in (("data_dir", args.data_dir), ("output_dir", args.output_dir),
                       ("work_dir", args.work_dir)):
        if value:
            config_manager.set_path(key, value)
    if args.keep_case:
        config_manager.config["export"]["keep_case"] = True

    start, finish = config_manager.get_batch_range()
    logger.info(f"Starting batch: samples {start}..{finish}")
    logger.info(f"Data: {config_manager.get_path('data_dir')}, output: {config_manager.get_path('output_dir')}")

    summary = run_batch(config_manager)

    if summary.failed:
        logger.warning(f"⚠️  {len(summary.failed)} samples failed: {summary.failed} - rerun the same range to retry them")
    return 0

if __name__ == "__main__":
    sys.exit(main())
