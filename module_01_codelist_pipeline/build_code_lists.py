"""
Module 1: Code List Builder
===========================

Builds diagnosis code lists (rule sets), combined lists and medication code
lists for CPRD GOLD and Aurum, compares them with previous versions and
writes the outputs.

Nothing is written until every requested list has been built, so a bad rule
or malformed dictionary never leaves a partial set of files behind.

Usage:
    python build_code_lists.py --all
    python build_code_lists.py --rule-sets smi depression --medications glp1ras
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Dict, List, Optional, Sequence
import sys

import pandas as pd

sys.path.insert(0, str(Path(__file__).parent))

from config.pipeline_config import (
    AURUM,
    AURUM_MEDICAL_DICT,
    AURUM_PRODUCT_DICT,
    CODE_LISTS_DIR,
    DATABASE_LABELS,
    DATABASES,
    DIAGNOSIS,
    GOLD,
    GOLD_MEDICAL_DICT,
    GOLD_PRODUCT_DICT,
    ICD10_DICT,
    MASTER_LISTS_DIR,
    MEDICATION,
    MEDICATION_REFERENCE_CONFIG,
    MEDICATION_REFERENCE_XLSX,
    OLD_CODE_LISTS_DIR,
    QOF_CLUSTERS_XLSX,
    load_classification_rules,
)
from extractors.medication_reference import load_medication_reference
from extractors.qof_clusters import load_qof_cluster
from extractors.vocabulary_loader import (
    load_codelist,
    load_icd10_dictionary,
    load_medical_dictionary,
    load_product_dictionary,
)
from processing.codelist_differ import CodeListDiff, diff_code_lists, uncovered_codes
from processing.codelist_writer import (
    combine_database_lists,
    write_code_ids,
    write_code_list,
    write_icd10_code_list,
    write_outcome_workbook,
    write_processed,
    write_review_workbook,
)
from processing.medication_matcher import MatchResult, match_medications
from processing.rule_classifier import (
    RuleSet,
    build_combined_code_list,
    build_code_list,
    get_rule_set,
)

logger = logging.getLogger(__name__)

ICD10 = "icd10"


@dataclass
class BuiltCodeList:
    """One built code list with its review tables."""

    name: str
    database: str
    record_kind: str
    codes: pd.DataFrame
    diff: Optional[CodeListDiff] = None
    excluded: Optional[pd.DataFrame] = None
    uncovered: Optional[pd.DataFrame] = None


@dataclass
class BuildResults:
    lists: List[BuiltCodeList] = field(default_factory=list)
    combined_medications: Dict[str, pd.DataFrame] = field(default_factory=dict)

    def get(self, name: str, database: str) -> Optional[BuiltCodeList]:
        for built in self.lists:
            if built.name == name and built.database == database:
                return built
        return None


class CodeListBuilder:
    """Builds, reviews and writes code lists."""

    def __init__(
        self,
        master_dir: Optional[Path] = None,
        output_dir: Optional[Path] = None,
        previous_dir: Optional[Path] = None,
        reference_path: Optional[Path] = None,
        qof_path: Optional[Path] = None,
        date_tag: Optional[str] = None,
        show_progress: bool = False,
    ):
        """
        Initialize builder.

        Args:
            master_dir: Folder holding the master dictionaries (file names as
                configured); defaults to the configured dictionary paths
            output_dir: Where code lists are written
            previous_dir: Root of previous code lists referenced by rule sets
            reference_path: Medication reference workbook
            qof_path: QOF business rules workbook (default: in master_dir)
            date_tag: Suffix for output file names (default: today, YYYYMMDD)
            show_progress: tqdm progress bars during medication matching
        """
        self.dictionary_paths = {
            (AURUM, DIAGNOSIS): AURUM_MEDICAL_DICT,
            (GOLD, DIAGNOSIS): GOLD_MEDICAL_DICT,
            (AURUM, MEDICATION): AURUM_PRODUCT_DICT,
            (GOLD, MEDICATION): GOLD_PRODUCT_DICT,
            (ICD10, DIAGNOSIS): ICD10_DICT,
        }
        if master_dir and Path(master_dir) != MASTER_LISTS_DIR:
            self.dictionary_paths = {
                key: Path(master_dir) / path.name for key, path in self.dictionary_paths.items()
            }
        self.output_dir = Path(output_dir) if output_dir else CODE_LISTS_DIR
        self.previous_dir = Path(previous_dir) if previous_dir else OLD_CODE_LISTS_DIR
        self.reference_path = Path(reference_path) if reference_path else MEDICATION_REFERENCE_XLSX
        self.date_tag = date_tag or date.today().strftime("%Y%m%d")
        self.show_progress = show_progress
        qof_default = Path(master_dir) / QOF_CLUSTERS_XLSX.name if master_dir else QOF_CLUSTERS_XLSX
        self.qof_path = Path(qof_path) if qof_path else qof_default
        self._vocabularies: Dict = {}
        self._clusters: Dict[str, Optional[pd.DataFrame]] = {}

    # -------------------------------------------------------------------------
    # Vocabularies
    # -------------------------------------------------------------------------

    def vocabulary(self, database: str, record_kind: str) -> pd.DataFrame:
        """Load (once) the dictionary for a database and record kind."""
        key = (database, record_kind)
        if key not in self._vocabularies:
            path = self.dictionary_paths[key]
            if database == ICD10:
                self._vocabularies[key] = load_icd10_dictionary(path)
            elif record_kind == MEDICATION:
                self._vocabularies[key] = load_product_dictionary(path, database)
            else:
                self._vocabularies[key] = load_medical_dictionary(path, database)
        return self._vocabularies[key]

    def reference_cluster(self, cluster_id: str) -> Optional[pd.DataFrame]:
        """Load (once) a QOF cluster; None if the workbook is not available."""
        if cluster_id not in self._clusters:
            if self.qof_path.exists():
                self._clusters[cluster_id] = load_qof_cluster(cluster_id, self.qof_path)
            else:
                logger.warning(f"QOF workbook not found, skipping {cluster_id} cross-check: {self.qof_path}")
                self._clusters[cluster_id] = None
        return self._clusters[cluster_id]

    # -------------------------------------------------------------------------
    # Building
    # -------------------------------------------------------------------------

    def _previous_list(self, rule_set: RuleSet, database: str) -> Optional[pd.DataFrame]:
        relative = rule_set.previous.get(database)
        if not relative:
            return None
        path = self.previous_dir / relative
        if not path.exists():
            logger.warning(f"Previous {database} list for '{rule_set.name}' not found: {path}")
            return None
        return load_codelist(path, database, DIAGNOSIS)

    def build_rule_set(self, name: str) -> List[BuiltCodeList]:
        """Build a diagnosis rule set for each database it applies to."""
        rule_set = get_rule_set(name)
        databases = [ICD10] if rule_set.dictionary == ICD10 else list(DATABASES)

        built = []
        for database in databases:
            vocab = self.vocabulary(database, DIAGNOSIS)
            codes = build_code_list(vocab, rule_set)

            diff = None
            previous = self._previous_list(rule_set, database) if database != ICD10 else None
            if previous is not None:
                diff = diff_code_lists(codes, previous, vocab)

            uncovered = None
            if rule_set.reference_cluster and database != ICD10:
                cluster = self.reference_cluster(rule_set.reference_cluster)
                if cluster is not None:
                    uncovered = uncovered_codes(cluster, codes)
            built.append(BuiltCodeList(name, database, DIAGNOSIS, codes, diff=diff, uncovered=uncovered))
        return built

    def build_combined(self, name: str) -> List[BuiltCodeList]:
        """Build a combined list (see classification_rules.yaml 'combined')."""
        cfg = load_classification_rules()['combined'][name]
        first_member = get_rule_set(cfg['members'][0])
        databases = [ICD10] if first_member.dictionary == ICD10 else list(DATABASES)

        return [
            BuiltCodeList(name, database, DIAGNOSIS,
                          build_combined_code_list(name, self.vocabulary(database, DIAGNOSIS)))
            for database in databases
        ]

    def build_medication(self, sheet: str) -> List[BuiltCodeList]:
        """Build the medication code list for one reference sheet."""
        label = MEDICATION_REFERENCE_CONFIG.sheets[sheet]
        reference = load_medication_reference(sheet, self.reference_path)

        built = []
        for database in DATABASES:
            result: MatchResult = match_medications(
                self.vocabulary(database, MEDICATION),
                reference,
                medication_field=label,
                show_progress=self.show_progress,
            )
            built.append(BuiltCodeList(sheet, database, MEDICATION, result.matched, excluded=result.excluded))
        return built

    def build(
        self,
        rule_sets: Sequence[str] = (),
        combined: Sequence[str] = (),
        medications: Sequence[str] = (),
    ) -> BuildResults:
        """Build every requested list without writing anything."""
        results = BuildResults()
        for name in rule_sets:
            results.lists.extend(self.build_rule_set(name))
        for name in combined:
            results.lists.extend(self.build_combined(name))
        for sheet in medications:
            built = self.build_medication(sheet)
            results.lists.extend(built)
            by_db = {b.database: b.codes for b in built}
            results.combined_medications[sheet] = combine_database_lists(by_db[AURUM], by_db[GOLD])
        return results

    # -------------------------------------------------------------------------
    # Writing
    # -------------------------------------------------------------------------

    def _file_stem(self, built: BuiltCodeList) -> str:
        label = DATABASE_LABELS.get(built.database, built.database.upper())
        return f"{label}_{built.name}_codelist_{self.date_tag}"

    def write(self, results: BuildResults) -> List[Path]:
        """Write code lists, extraction files and review workbooks."""
        written = []
        reviews: Dict[str, Dict[str, pd.DataFrame]] = {}

        for built in results.lists:
            folder = self.output_dir / built.name
            stem = self._file_stem(built)
            if built.database == ICD10:
                written.append(write_icd10_code_list(built.codes, folder / f"{stem}.txt"))
                continue

            written.append(write_code_list(built.codes, folder / f"{stem}.txt", built.database, built.record_kind))
            written.append(write_code_ids(built.codes, folder / f"{stem}_ids.txt"))
            written.append(write_processed(built.codes, folder / f"{stem}_processed.txt",
                                           built.database, built.record_kind))

            label = DATABASE_LABELS[built.database]
            sheets = reviews.setdefault(built.name, {})
            if built.diff is not None:
                sheets[f"{label} new"] = built.diff.added
                sheets[f"{label} missing"] = built.diff.missing
            if built.excluded is not None:
                sheets[f"{label} excluded"] = built.excluded
            if built.uncovered is not None:
                sheets[f"{label} QOF not listed"] = built.uncovered

        for sheet, combined in results.combined_medications.items():
            path = self.output_dir / sheet / f"Aurum_Gold_{sheet}_codelist_{self.date_tag}.txt"
            path.parent.mkdir(parents=True, exist_ok=True)
            combined.to_csv(path, sep="\t", index=False)
            written.append(path)

        for name, sheets in reviews.items():
            path = write_review_workbook(sheets, self.output_dir / name / f"{name}_review_{self.date_tag}.xlsx")
            if path:
                written.append(path)

        # Bundled ICD-10 workbooks, only when every listed code list was built
        for name, cfg in load_classification_rules().get('workbooks', {}).items():
            members = {sheet: results.get(list_name, ICD10) for sheet, list_name in cfg['sheets'].items()}
            if any(built is None for built in members.values()):
                continue
            path = write_outcome_workbook(
                {sheet: built.codes for sheet, built in members.items()},
                self.output_dir / f"{name}_{self.date_tag}.xlsx",
            )
            if path:
                written.append(path)
        return written

    def run(
        self,
        rule_sets: Sequence[str] = (),
        combined: Sequence[str] = (),
        medications: Sequence[str] = (),
    ) -> BuildResults:
        """Build and write the requested code lists."""
        print("=" * 60)
        print("Module 1: Code List Builder")
        print("=" * 60)

        print(f"\n1. Building {len(rule_sets)} rule sets, {len(combined)} combined lists, "
              f"{len(medications)} medication lists...")
        results = self.build(rule_sets, combined, medications)

        print(f"\n2. Writing outputs to {self.output_dir}...")
        written = self.write(results)

        print("\n" + "=" * 60)
        print("Code List Summary")
        print("=" * 60)
        for built in results.lists:
            line = f"   {built.name:<22} {built.database:<6} {len(built.codes):>7,} codes"
            if built.diff is not None:
                line += f"  (+{len(built.diff.added)} new, {len(built.diff.missing)} missing)"
            if built.excluded is not None:
                line += f"  ({len(built.excluded)} excluded)"
            if built.uncovered is not None:
                line += f"  ({len(built.uncovered)} QOF codes not listed)"
            print(line)
        print(f"\n   Files written: {len(written)}")
        print("=" * 60)
        return results


# =============================================================================
# CLI
# =============================================================================

def main(argv: Optional[Sequence[str]] = None) -> BuildResults:
    import argparse

    rules = load_classification_rules()
    parser = argparse.ArgumentParser(description="Build CPRD GOLD/Aurum code lists")
    parser.add_argument('--all', action='store_true', help='Build every configured list')
    parser.add_argument('--rule-sets', nargs='*', default=[], choices=list(rules.get('rule_sets', {})),
                        help='Diagnosis rule sets to build')
    parser.add_argument('--combined', nargs='*', default=[], choices=list(rules.get('combined', {})),
                        help='Combined lists to build')
    parser.add_argument('--medications', nargs='*', default=[],
                        choices=list(MEDICATION_REFERENCE_CONFIG.sheets),
                        help='Medication reference sheets to build')
    parser.add_argument('--master-dir', type=Path, help='Folder with master dictionaries')
    parser.add_argument('--previous-dir', type=Path, help='Root of previous code lists')
    parser.add_argument('--reference', type=Path, help='Medication reference workbook')
    parser.add_argument('--qof', type=Path, help='QOF business rules workbook')
    parser.add_argument('--output-dir', type=Path, help='Output folder')
    parser.add_argument('--date-tag', help='Output file date suffix (YYYYMMDD)')
    parser.add_argument('--progress', action='store_true', help='Show progress bars')
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    rule_sets, combined, medications = args.rule_sets, args.combined, args.medications
    if args.all:
        rule_sets = list(rules.get('rule_sets', {}))
        combined = list(rules.get('combined', {}))
        medications = list(MEDICATION_REFERENCE_CONFIG.sheets)
    if not (rule_sets or combined or medications):
        parser.error("nothing to build: pass --all or at least one list")

    builder = CodeListBuilder(
        master_dir=args.master_dir,
        output_dir=args.output_dir,
        previous_dir=args.previous_dir,
        reference_path=args.reference,
        qof_path=args.qof,
        date_tag=args.date_tag,
        show_progress=args.progress,
    )
    return builder.run(rule_sets, combined, medications)


if __name__ == "__main__":
    main()
