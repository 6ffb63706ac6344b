"""
Annotation workbook export/import and per-cluster summaries.

The cluster phase writes one sheet per database in which every cluster block is
introduced by a ``Pathway #<ClusterID>`` header row. A reviewer labels the blocks
(``Pathway #3: Immune signalling``), may reorder whole blocks or drop member rows,
and the finalised copy is read back here for aggregation.
"""

import logging
import re
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import polars as pl
from openpyxl import Workbook, load_workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter

from .exceptions import AnnotationStructureError
from .stats import neg_log10

logger = logging.getLogger(__name__)

# Canonical column -> workbook header
WORKBOOK_COLUMNS = {
    'pathway_id': 'ID',
    'name': 'Name',
    'genes_in_pathway': 'GenesInPathway',
    'genes_in_overlap': 'GenesInOverlap',
    'ratio': 'Ratio',
    'p_value': 'p-value',
    'q_value': 'FDR q-value',
    'accession': 'Accession',
    'gene_symbols': 'Genes',
    'description': 'Description',
}
REQUIRED_HEADERS = ['ID', 'GenesInPathway', 'GenesInOverlap', 'FDR q-value']
NUMERIC_COLUMNS = {'genes_in_pathway': int, 'genes_in_overlap': int,
                   'ratio': float, 'p_value': float, 'q_value': float}

CLUSTER_HEADER = "Pathway #{cluster_id}"
CLUSTER_HEADER_PATTERN = re.compile(r'^\s*Pathway\s*#\s*(\d+)\b\s*[:\-]?\s*(.*?)\s*$')

_INVALID_SHEET_CHARS = re.compile(r'[\[\]:*?/\\]')

SUMMARY_SCHEMA = {
    'database': pl.Utf8,
    'cluster_id': pl.Int64,
    'annotation': pl.Utf8,
    'n_pathways': pl.Int64,
    'genes_in_overlap': pl.Int64,
    'genes_in_pathway': pl.Int64,
    'pooled_ratio': pl.Float64,
    'mean_neg_log10_q': pl.Float64,
}


def sheet_title(database: str) -> str:
    """Worksheet title used for a database (Excel forbids some characters and caps length at 31)."""
    return _INVALID_SHEET_CHARS.sub('_', database)[:31]


def write_annotation_workbook(tables: Dict[str, pl.DataFrame], output_path: Path) -> Path:
    """
    Write the annotatable cluster workbook.

    Args:
        tables: Database name -> records ordered by cluster (from order_by_cluster)
        output_path: Destination .xlsx path

    Returns:
        Path of the written workbook
    """
    header_font = Font(bold=True, color='FFFFFF')
    header_fill = PatternFill(start_color='1F4E79', end_color='1F4E79', fill_type='solid')
    cluster_font = Font(bold=True)
    cluster_fill = PatternFill(start_color='D6EAF8', end_color='D6EAF8', fill_type='solid')

    wb = Workbook()
    wb.remove(wb.active)
    headers = list(WORKBOOK_COLUMNS.values())

    for database, records in tables.items():
        ws = wb.create_sheet(title=sheet_title(database))
        ws.append(headers)
        for cell in ws[1]:
            cell.font = header_font
            cell.fill = header_fill
            cell.alignment = Alignment(horizontal='center')

        current_cluster = None
        for row in records.iter_rows(named=True):
            if row['cluster_id'] != current_cluster:
                current_cluster = row['cluster_id']
                ws.append([CLUSTER_HEADER.format(cluster_id=current_cluster)])
                for cell in ws[ws.max_row]:
                    cell.font = cluster_font
                    cell.fill = cluster_fill

            values = []
            for col in WORKBOOK_COLUMNS:
                value = row.get(col)
                if col == 'gene_symbols':
                    value = ', '.join(value or [])
                values.append(value)
            ws.append(values)

        ws.freeze_panes = 'A2'
        for i, width in enumerate([45, 50, 16, 16, 10, 12, 12, 14, 60, 40], start=1):
            ws.column_dimensions[get_column_letter(i)].width = width

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    wb.save(output_path)
    logger.info(f"Saved annotation workbook with {len(tables)} sheet(s) to {output_path}")
    return output_path


def _parse_cluster_header(value) -> Optional[Tuple[int, str]]:
    """Return (cluster_id, label) if a first cell is a cluster header row."""
    if not isinstance(value, str):
        return None
    match = CLUSTER_HEADER_PATTERN.match(value)
    if match is None:
        return None
    return int(match.group(1)), (match.group(2) or '').strip()


def _convert(value, kind, sheet: str, row_number: int, header: str):
    if value is None or value == '':
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise AnnotationStructureError(
            f"row {row_number}: non-numeric value {value!r} in column '{header}'", sheet=sheet
        )
    if kind is int:
        if not number.is_integer():
            raise AnnotationStructureError(
                f"row {row_number}: non-integer count {value!r} in column '{header}'", sheet=sheet
            )
        return int(number)
    return number


def parse_annotation_sheet(rows: List[tuple], expected_clusters: int, sheet: str) -> pl.DataFrame:
    """
    Split one finalised sheet into cluster blocks and validate its structure.

    Args:
        rows: Sheet rows as tuples of cell values, column header row first
        expected_clusters: Number of clusters exported for this sheet
        sheet: Sheet name used in error messages

    Returns:
        Member rows with cluster_id, annotation and block_order columns, in sheet order

    Raises:
        AnnotationStructureError: if the sheet no longer matches the exported structure
    """
    rows = [(i, row) for i, row in enumerate(rows, start=1)
            if row and any(cell not in (None, '') for cell in row)]
    if not rows:
        raise AnnotationStructureError("sheet is empty", sheet=sheet)

    header_row_number, header = rows[0]
    positions = {str(name).strip(): idx for idx, name in enumerate(header) if name is not None}
    missing = [name for name in REQUIRED_HEADERS if name not in positions]
    if missing:
        raise AnnotationStructureError(f"missing required columns: {', '.join(missing)}", sheet=sheet)
    columns = {col: positions[name] for col, name in WORKBOOK_COLUMNS.items() if name in positions}

    blocks = []
    for row_number, row in rows[1:]:
        cluster_header = _parse_cluster_header(row[0])
        if cluster_header is not None:
            blocks.append({'cluster_id': cluster_header[0], 'annotation': cluster_header[1],
                           'row_number': row_number, 'members': []})
            continue
        if not blocks:
            raise AnnotationStructureError(
                f"row {row_number} appears before the first 'Pathway #' header row", sheet=sheet
            )
        member = {}
        for col, idx in columns.items():
            value = row[idx] if idx < len(row) else None
            if col in NUMERIC_COLUMNS:
                value = _convert(value, NUMERIC_COLUMNS[col], sheet, row_number, WORKBOOK_COLUMNS[col])
            elif value is not None:
                value = str(value).strip()
            member[col] = value
        if not member.get('pathway_id'):
            raise AnnotationStructureError(f"row {row_number} has no pathway ID", sheet=sheet)
        blocks[-1]['members'].append(member)

    if len(blocks) != expected_clusters:
        raise AnnotationStructureError(
            f"found {len(blocks)} 'Pathway #' header rows, expected {expected_clusters}", sheet=sheet
        )

    seen = set()
    for block in blocks:
        cluster_id = block['cluster_id']
        if cluster_id in seen:
            raise AnnotationStructureError(
                f"cluster header 'Pathway #{cluster_id}' appears more than once", sheet=sheet
            )
        seen.add(cluster_id)
        if not 1 <= cluster_id <= expected_clusters:
            raise AnnotationStructureError(
                f"cluster header 'Pathway #{cluster_id}' (row {block['row_number']}) "
                f"is outside 1..{expected_clusters}", sheet=sheet
            )
        if not block['members']:
            raise AnnotationStructureError(
                f"cluster 'Pathway #{cluster_id}' (row {block['row_number']}) has no member rows", sheet=sheet
            )

    records = []
    for order, block in enumerate(blocks, start=1):
        for member in block['members']:
            records.append({
                'cluster_id': block['cluster_id'],
                'annotation': block['annotation'],
                'block_order': order,
                'pathway_id': member['pathway_id'],
                'name': member.get('name'),
                'genes_in_pathway': member['genes_in_pathway'],
                'genes_in_overlap': member['genes_in_overlap'],
                'ratio': member.get('ratio'),
                'p_value': member.get('p_value'),
                'q_value': member['q_value'],
            })

    return pl.DataFrame(records, schema={
        'cluster_id': pl.Int64,
        'annotation': pl.Utf8,
        'block_order': pl.Int64,
        'pathway_id': pl.Utf8,
        'name': pl.Utf8,
        'genes_in_pathway': pl.Int64,
        'genes_in_overlap': pl.Int64,
        'ratio': pl.Float64,
        'p_value': pl.Float64,
        'q_value': pl.Float64,
    })


def read_annotation_workbook(input_path: Path, expected_clusters: Dict[str, int]) -> Dict[str, pl.DataFrame]:
    """
    Read and validate a finalised annotation workbook.

    Args:
        input_path: Path to the hand-annotated .xlsx copy
        expected_clusters: Database name -> number of exported clusters

    Returns:
        Database name -> validated member rows (see parse_annotation_sheet) in
        sheet block order, members of each block by ascending q-value, each with
        a ``database`` column

    Raises:
        FileNotFoundError: if the workbook does not exist
        AnnotationStructureError: if any sheet is missing or structurally altered
    """
    input_path = Path(input_path)
    if not input_path.is_file():
        raise FileNotFoundError(f"Annotated workbook not found: {input_path}")

    wb = load_workbook(input_path, read_only=True, data_only=True)
    try:
        annotated = {}
        for database, n_clusters in expected_clusters.items():
            title = sheet_title(database)
            if title not in wb.sheetnames:
                raise AnnotationStructureError(f"sheet for database '{database}' is missing", sheet=title)
            rows = list(wb[title].iter_rows(values_only=True))
            sheet = parse_annotation_sheet(rows, n_clusters, title)
            # Blocks keep the reviewer's order; members are re-sorted by significance
            annotated[database] = (
                sheet
                .sort(['block_order', 'q_value', 'p_value', 'pathway_id'], nulls_last=True)
                .with_columns(pl.lit(database).alias('database'))
            )
            logger.info(f"{database}: read {sheet.height} annotated pathways in {n_clusters} clusters")
    finally:
        wb.close()

    return annotated


def summarise_clusters(annotated: pl.DataFrame) -> pl.DataFrame:
    """
    Per-cluster aggregates of one database's annotated pathways.

    Pooled ratio is sum(genes_in_overlap) / sum(genes_in_pathway) over exactly the
    cluster's members; mean significance is the mean of -log10(q) over members.
    Clusters keep the order in which they first appear in ``annotated``.

    Args:
        annotated: Member rows with cluster_id, annotation, genes_in_overlap,
                   genes_in_pathway and q_value columns

    Returns:
        ClusterSummary DataFrame
    """
    if annotated.height == 0:
        return pl.DataFrame(schema=SUMMARY_SCHEMA)

    database = annotated['database'][0] if 'database' in annotated.columns else None
    significance = pl.Series('_neg_log10_q', neg_log10(annotated['q_value'].to_numpy()))

    summary = (
        annotated
        .with_columns(significance.fill_nan(None))
        .group_by('cluster_id', maintain_order=True)
        .agg(
            pl.col('annotation').first(),
            pl.len().alias('n_pathways'),
            pl.col('genes_in_overlap').sum(),
            pl.col('genes_in_pathway').sum(),
            pl.col('_neg_log10_q').mean().alias('mean_neg_log10_q'),
        )
        .with_columns(
            pl.when(pl.col('genes_in_pathway') > 0)
            .then(pl.col('genes_in_overlap') / pl.col('genes_in_pathway'))
            .otherwise(None)
            .alias('pooled_ratio'),
            pl.lit(database, dtype=pl.Utf8).alias('database'),
        )
    )
    return summary.select(list(SUMMARY_SCHEMA)).cast(SUMMARY_SCHEMA)


def summarise_annotations(annotated: Dict[str, pl.DataFrame]) -> pl.DataFrame:
    """ClusterSummary rows for every database, in database then sheet order."""
    summaries = [summarise_clusters(frame) for frame in annotated.values()]
    if not summaries:
        return pl.DataFrame(schema=SUMMARY_SCHEMA)
    return pl.concat(summaries)
