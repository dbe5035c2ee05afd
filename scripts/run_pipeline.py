"""
Run the Parcel Fusion Pipeline

Fetches (or replays from cache), dates and clusters one or more sources and
writes their detailed and aggregated GeoJSON outputs.
"""
import argparse
import sys
from pathlib import Path

# Add parent directory to Python path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.parcelfusion.exceptions import ParcelFusionError
from src.parcelfusion.pipelines.driver import PipelineDriver
from src.parcelfusion.registry.sources import list_sources
from src.parcelfusion.utils.logger import get_logger, setup_logging

logger = get_logger(__name__)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the parcel fusion pipeline")
    parser.add_argument(
        "--source",
        nargs="+",
        choices=list_sources(),
        required=True,
        help="Sources to run, one after another",
    )
    parser.add_argument("--force", action="store_true", help="Fetch even when the cache is fresh")
    parser.add_argument("--output-dir", type=Path, default=None, help="Where to write output files")
    parser.add_argument("--no-cache", action="store_true", help="Neither read nor write the feature cache")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    return parser.parse_args()


def main():
    args = parse_args()
    setup_logging(level=args.log_level)

    driver = PipelineDriver(output_dir=args.output_dir, use_cache=not args.no_cache)
    failed = []

    for source_id in args.source:
        try:
            report = driver.run(source_id, force_refresh=args.force)
        except ParcelFusionError as e:
            print(f"\n✗ {source_id} failed: {e}\n")
            failed.append(source_id)
            continue
        except KeyboardInterrupt:
            print("\n\n! Run interrupted by user\n")
            logger.warning("pipeline_interrupted_by_user", source_id=source_id)
            sys.exit(130)

        print("\n" + "=" * 60)
        print(f"{source_id.upper()} ({report.status})")
        print("=" * 60)
        print(f"Record source: {report.record_source}{' (cached)' if report.from_cache else ''}")
        print(f"Processed:     {report.processed}")
        print(f"Skipped:       {report.skipped}")
        for reason, count in sorted(report.skip_reasons.items()):
            print(f"  {reason}: {count}")
        print("Date methods:")
        for method, count in sorted(report.date_methods.items()):
            print(f"  {method}: {count}")
        print(f"Clusters:      {report.clusters}")
        print(f"Detailed:      {report.detailed_path}")
        print(f"Aggregated:    {report.aggregated_path}")
        print(f"Duration:      {report.duration_seconds}s")
        print("=" * 60 + "\n")

    if failed:
        sys.exit(1)


if __name__ == "__main__":
    main()
