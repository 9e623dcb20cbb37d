"""
QOF Cluster Loader
==================

Reads the expanded cluster list of the QOF business rules workbook. A
cluster (e.g. MH_COD, the incentivised SMI register codes) is an external
reference used to spot codes a rule-based list has missed.
"""

import logging
from pathlib import Path
from typing import Union

import pandas as pd
import sys

sys.path.insert(0, str(Path(__file__).parent.parent))

from config.pipeline_config import QOF_CLUSTER_CONFIG, QOF_CLUSTERS_XLSX
from utils.errors import MissingColumnError

logger = logging.getLogger(__name__)


def select_cluster(raw: pd.DataFrame, cluster_id: str, source: str = None) -> pd.DataFrame:
    """
    Subset the expanded cluster list to one cluster.

    Args:
        raw: Expanded cluster list as read from the workbook
        cluster_id: QOF cluster ID (e.g. "MH_COD")
        source: Name used in error messages

    Returns:
        Cluster rows with the SNOMED concept ID as code_id, one row per code
    """
    cfg = QOF_CLUSTER_CONFIG
    raw = raw.rename(columns=lambda c: str(c).strip())
    missing = [c for c in (cfg.cluster_column, cfg.code_column) if c not in raw.columns]
    if missing:
        raise MissingColumnError(missing, source)

    cluster = raw[raw[cfg.cluster_column].astype("string").str.strip() == cluster_id].copy()
    cluster = cluster.rename(columns={cfg.code_column: 'code_id'})
    cluster['code_id'] = cluster['code_id'].astype("string").str.strip()
    cluster = cluster[cluster['code_id'].notna() & (cluster['code_id'] != "")]
    cluster = cluster.drop_duplicates(subset='code_id').reset_index(drop=True)

    logger.info(f"QOF cluster {cluster_id}: {len(cluster):,} codes")
    return cluster


def load_qof_cluster(
    cluster_id: str,
    path: Union[str, Path] = QOF_CLUSTERS_XLSX,
) -> pd.DataFrame:
    """Load one cluster from the QOF business rules workbook."""
    raw = pd.read_excel(
        path,
        sheet_name=QOF_CLUSTER_CONFIG.sheet,
        skiprows=QOF_CLUSTER_CONFIG.skip_rows,
        dtype=str,
        engine="openpyxl",
    )
    return select_cluster(raw, cluster_id, source=Path(path).name)
