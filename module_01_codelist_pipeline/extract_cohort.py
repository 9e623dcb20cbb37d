"""
Module 1: Cohort Extraction
===========================

Extracts patient events for one code list from the CPRD GOLD and Aurum
patient files, merges both databases, reconciles dates and saves parquet.

Usage:
    python extract_cohort.py --name smi --kind diagnosis \\
        --gold Code_Lists/smi/Gold_smi_codelist_20250701.txt \\
        --aurum Code_Lists/smi/Aurum_smi_codelist_20250701.txt
"""

import logging
from pathlib import Path
from typing import Dict, Optional, Sequence
import sys

import pandas as pd

sys.path.insert(0, str(Path(__file__).parent))

from config.pipeline_config import (
    CPRD_DIR,
    DATE_CONFIG,
    EXTRACTION_DIR,
    RECORD_KINDS,
    normalize_database,
)
from extractors.cohort_extractor import extract, list_source_files
from extractors.vocabulary_loader import load_codelist
from processing.cohort_combiner import combine_events, save_events

logger = logging.getLogger(__name__)


class CohortExtractionPipeline:
    """Code-list-driven extraction across both CPRD databases."""

    def __init__(
        self,
        name: str,
        code_list_paths: Dict[str, Path],
        record_kind: str,
        cprd_dir: Optional[Path] = None,
        chunk_size: Optional[int] = None,
    ):
        """
        Initialize pipeline.

        Args:
            name: Cohort name used in the output file name
            code_list_paths: database ("gold"/"aurum") -> code list file
            record_kind: "diagnosis" or "medication"
            cprd_dir: Root of the CPRD patient extracts
            chunk_size: Rows per read chunk
        """
        if record_kind not in RECORD_KINDS:
            raise ValueError(f"record_kind must be one of {RECORD_KINDS}, got {record_kind!r}")
        self.name = name
        self.code_list_paths = {
            normalize_database(db): Path(path) for db, path in code_list_paths.items()
        }
        self.record_kind = record_kind
        self.cprd_dir = Path(cprd_dir) if cprd_dir else CPRD_DIR
        self.chunk_size = chunk_size

    def extract_database(self, database: str) -> pd.DataFrame:
        """Extract events for one database from all of its source files."""
        code_list = load_codelist(self.code_list_paths[database], database, self.record_kind)
        files = list_source_files(database, self.record_kind, self.cprd_dir)
        print(f"   {database}: {len(code_list):,} codes, {len(files)} source files")
        return extract(files, code_list, database, self.record_kind, self.chunk_size)

    def run(
        self,
        output_path: Optional[Path] = None,
        earliest_date: Optional[str] = None,
        latest_date: Optional[str] = None,
    ) -> pd.DataFrame:
        """
        Run extraction, combination and date reconciliation.

        Args:
            output_path: Parquet output (default: EXTRACTION_DIR/pat_<name>_comb.parquet)
            earliest_date: Earliest acceptable date (ISO)
            latest_date: End of study window (ISO)

        Returns:
            Combined patient events
        """
        print("=" * 60)
        print(f"Module 1: Cohort Extraction ({self.name}, {self.record_kind})")
        print("=" * 60)

        print("\n1. Extracting patient records...")
        tables = [self.extract_database(db) for db in self.code_list_paths]
        n_raw = sum(len(t) for t in tables)
        print(f"   Matched {n_raw:,} raw events")

        print("\n2. Combining databases and reconciling dates...")
        events = combine_events(tables, earliest_date, latest_date)

        output_path = Path(output_path) if output_path else EXTRACTION_DIR / f"pat_{self.name}_comb.parquet"
        print(f"\n3. Saving to {output_path}...")
        save_events(events, output_path)

        print("\n" + "=" * 60)
        print("Extraction Summary")
        print("=" * 60)
        print(f"   Events kept: {len(events):,} of {n_raw:,}")
        print(f"   Patients: {events['patient_id'].nunique() if len(events) else 0:,}")
        if len(events):
            for database, n in events.groupby('database')['patient_id'].nunique().items():
                print(f"     {database}: {n:,}")
        print(f"\n   Output: {output_path}")
        print("=" * 60)
        return events


# =============================================================================
# CLI
# =============================================================================

def main(argv: Optional[Sequence[str]] = None) -> pd.DataFrame:
    import argparse

    parser = argparse.ArgumentParser(description="Extract CPRD patient events for a code list")
    parser.add_argument('--name', required=True, help='Cohort name (output file name)')
    parser.add_argument('--kind', required=True, choices=list(RECORD_KINDS), help='Record kind')
    parser.add_argument('--gold', type=Path, help='GOLD code list')
    parser.add_argument('--aurum', type=Path, help='Aurum code list')
    parser.add_argument('--cprd-dir', type=Path, help='Root of CPRD patient files')
    parser.add_argument('--output', type=Path, help='Output parquet path')
    parser.add_argument('--earliest', default=DATE_CONFIG.earliest_date, help='Earliest valid date')
    parser.add_argument('--latest', default=DATE_CONFIG.latest_date, help='End of study window')
    parser.add_argument('--chunk-size', type=int, help='Rows per read chunk')
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    code_lists = {db: path for db, path in (('gold', args.gold), ('aurum', args.aurum)) if path}
    if not code_lists:
        parser.error("pass --gold and/or --aurum")

    pipeline = CohortExtractionPipeline(
        name=args.name,
        code_list_paths=code_lists,
        record_kind=args.kind,
        cprd_dir=args.cprd_dir,
        chunk_size=args.chunk_size,
    )
    return pipeline.run(args.output, args.earliest, args.latest)


if __name__ == "__main__":
    main()
