"""
Generate a data-quality report for a detailed output file.
"""
import argparse
import sys
from pathlib import Path

# Add parent directory to Python path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.parcelfusion.monitoring.data_quality import (
    compute_detail_metrics,
    decade_histogram,
    load_detailed_properties,
)
from src.parcelfusion.utils.logger import get_logger

logger = get_logger(__name__)


def main():
    parser = argparse.ArgumentParser(description="Data-quality report for a detailed output file")
    parser.add_argument("path", type=Path, help="<source>-detailed.geojson or .ndjson")
    args = parser.parse_args()

    if not args.path.exists():
        raise FileNotFoundError(f"{args.path} not found. Run scripts/run_pipeline.py first.")

    df = load_detailed_properties(args.path)
    metrics = compute_detail_metrics(df)

    logger.info("detail_metrics", path=str(args.path), total=metrics["total"], methods=metrics["methods"])

    print(f"Parcels: {metrics['total']}")
    if not metrics["total"]:
        return

    print(f"Estimated share: {metrics['estimated_share']:.1%}")
    print(f"Years: {metrics['years']['min']} - {metrics['years']['max']} (median {metrics['years']['median']})")

    print("\nDate methods:")
    for method, count in metrics["methods"].items():
        print(f"  {method}: {count} (median year {metrics['median_year_by_method'].get(method)})")

    print("\nConfidence:")
    for level, count in metrics["confidence"].items():
        print(f"  {level}: {count}")

    print("\nCategories:")
    for category, count in metrics["categories"].items():
        print(f"  {category}: {count}")

    print("\nField completeness:")
    for column, share in metrics["completeness"].items():
        print(f"  {column}: {share:.1%}")

    print("\nDecades (known / estimated):")
    for row in decade_histogram(df):
        print(f"  {row['decade']}s: {row['known']} / {row['estimated']}")


if __name__ == "__main__":
    main()
