"""
Loading and joining of enrichment result tables and the pathway mapping table.
"""

from typing import Dict, Iterable, List, Optional, Tuple
from pathlib import Path
import logging

import polars as pl

logger = logging.getLogger(__name__)

# MSigDB "compute overlaps" headers -> canonical column names
ENRICHMENT_COLUMNS = {
    'Gene Set Name': 'pathway_id',
    '# Genes in Gene Set (K)': 'genes_in_pathway',
    'Description': 'description',
    '# Genes in Overlap (k)': 'genes_in_overlap',
    'k/K': 'ratio',
    'p-value': 'p_value',
    'FDR q-value': 'q_value',
}

# MSigDB gene set export headers -> canonical column names
MAPPING_COLUMNS = {
    'STANDARD_NAME': 'pathway_id',
    'SYSTEMATIC_NAME': 'accession',
    'GENE_SYMBOLS': 'gene_symbols',
    'GENE_IDS': 'gene_ids',
}

MEMBER_COLUMNS = ['gene_symbols', 'gene_ids']

RECORD_COLUMNS = [
    'database', 'pathway_id', 'name', 'description', 'genes_in_pathway',
    'genes_in_overlap', 'ratio', 'p_value', 'q_value', 'accession',
    'gene_symbols', 'gene_ids',
]


def _rename_columns(df: pl.DataFrame, column_map: Dict[str, str]) -> pl.DataFrame:
    """Rename only the mapped headers that are present in the table."""
    present = {old: new for old, new in column_map.items() if old in df.columns and old != new}
    return df.rename(present) if present else df


def _require_columns(df: pl.DataFrame, required: Iterable[str], source: Path) -> None:
    missing = [col for col in required if col not in df.columns]
    if missing:
        raise ValueError(f"Missing required columns in {source}: {', '.join(missing)}")


def load_enrichment_table(
    file_path: Path,
    database: str,
    column_map: Optional[Dict[str, str]] = None,
    separator: str = '\t'
) -> pl.DataFrame:
    """
    Load one per-database enrichment result table.

    Args:
        file_path: Path to the delimited enrichment result file
        database: Name of the functional database the table came from
        column_map: Header -> canonical column mapping (defaults to MSigDB headers)
        separator: Field delimiter

    Returns:
        DataFrame with canonical enrichment columns and a ``database`` column
    """
    df = pl.read_csv(
        file_path,
        separator=separator,
        has_header=True,
        infer_schema_length=10000
    )
    df = _rename_columns(df, column_map or ENRICHMENT_COLUMNS)
    _require_columns(df, ['pathway_id', 'genes_in_pathway', 'genes_in_overlap'], file_path)

    df = df.with_columns(
        pl.col('pathway_id').cast(pl.Utf8).str.strip_chars(),
        pl.col('genes_in_pathway').cast(pl.Int64),
        pl.col('genes_in_overlap').cast(pl.Int64),
    )

    if 'description' not in df.columns:
        df = df.with_columns(pl.lit('').alias('description'))
    for col in ('p_value', 'q_value'):
        if col in df.columns:
            df = df.with_columns(pl.col(col).cast(pl.Float64))
        else:
            df = df.with_columns(pl.lit(None, dtype=pl.Float64).alias(col))

    # The overlap ratio is derivable, so tolerate tables that omit it
    if 'ratio' in df.columns:
        df = df.with_columns(pl.col('ratio').cast(pl.Float64))
    else:
        df = df.with_columns(
            (pl.col('genes_in_overlap') / pl.col('genes_in_pathway')).alias('ratio')
        )

    df = df.with_columns(pl.lit(database).alias('database'))

    duplicated = df.height - df['pathway_id'].n_unique()
    if duplicated:
        logger.warning(f"{database}: dropping {duplicated} duplicated pathway rows")
        df = df.unique(subset='pathway_id', keep='first', maintain_order=True)

    logger.info(f"Loaded {df.height} {database} pathways from {file_path}")
    return df.select([
        'database', 'pathway_id', 'description', 'genes_in_pathway',
        'genes_in_overlap', 'ratio', 'p_value', 'q_value'
    ])


def load_enrichment_tables(
    files: Dict[str, Path],
    column_map: Optional[Dict[str, str]] = None,
    separator: str = '\t'
) -> Dict[str, pl.DataFrame]:
    """
    Load every configured enrichment table.

    Args:
        files: Database name -> file path, in the order tables should be reported
        column_map: Header -> canonical column mapping
        separator: Field delimiter

    Returns:
        Database name -> enrichment DataFrame
    """
    return {
        database: load_enrichment_table(path, database, column_map=column_map, separator=separator)
        for database, path in files.items()
    }


def load_pathway_mapping(
    file_path: Path,
    column_map: Optional[Dict[str, str]] = None,
    separator: str = '\t'
) -> pl.DataFrame:
    """
    Load the pathway -> member gene mapping table.

    Member columns hold comma-separated gene symbols and gene identifiers; they are
    split into list columns with whitespace trimmed and empty entries dropped.

    Args:
        file_path: Path to the mapping file
        column_map: Header -> canonical column mapping (defaults to MSigDB headers)
        separator: Field delimiter

    Returns:
        DataFrame with pathway_id, accession, gene_symbols and gene_ids columns
    """
    # Read everything as text so numeric gene identifiers keep their exact form
    df = pl.read_csv(
        file_path,
        separator=separator,
        has_header=True,
        infer_schema_length=0
    )
    df = _rename_columns(df, column_map or MAPPING_COLUMNS)
    _require_columns(df, ['pathway_id', 'gene_ids'], file_path)

    if 'accession' not in df.columns:
        df = df.with_columns(pl.lit(None, dtype=pl.Utf8).alias('accession'))
    if 'gene_symbols' not in df.columns:
        df = df.with_columns(pl.lit('').alias('gene_symbols'))

    df = df.with_columns(
        pl.col('pathway_id').str.strip_chars(),
        *[
            pl.col(col)
            .fill_null('')
            .str.split(',')
            .list.eval(pl.element().str.strip_chars().filter(pl.element().str.strip_chars() != ''))
            .alias(col)
            for col in MEMBER_COLUMNS
        ]
    )

    duplicated = df.height - df['pathway_id'].n_unique()
    if duplicated:
        logger.warning(f"Mapping table has {duplicated} duplicated pathway keys; keeping the first of each")
        df = df.unique(subset='pathway_id', keep='first', maintain_order=True)

    logger.info(f"Loaded {df.height} pathway definitions from {file_path}")
    return df.select(['pathway_id', 'accession'] + MEMBER_COLUMNS)


def normalise_pathway_name(name: str, prefixes: Optional[Iterable[str]] = None) -> str:
    """
    Turn a standard gene set name into a display name.

    A leading database-prefix token is removed and underscores become spaces,
    e.g. ``GOBP_RESPONSE_TO_HYPOXIA`` -> ``RESPONSE TO HYPOXIA``.

    Args:
        name: Standard gene set name
        prefixes: Prefix tokens to strip

    Returns:
        Display name
    """
    if name is None:
        return ''
    prefixes = set(prefixes or [])
    token, sep, rest = name.partition('_')
    if sep and rest and token in prefixes:
        name = rest
    return name.replace('_', ' ').strip()


def annotate_pathways(
    enrichment: pl.DataFrame,
    mapping: pl.DataFrame,
    prefixes: Optional[Iterable[str]] = None
) -> Tuple[pl.DataFrame, int]:
    """
    Left-join mapping attributes onto enrichment records by pathway key.

    Pathways absent from the mapping keep empty member sets. This is not an
    error; the number of such rows is logged and returned.

    Args:
        enrichment: Enrichment DataFrame for one database
        mapping: Mapping DataFrame from load_pathway_mapping
        prefixes: Prefix tokens stripped from display names

    Returns:
        Tuple of (annotated DataFrame of pathway records, number of unmatched rows)
    """
    prefixes = list(prefixes or [])
    joined = (
        enrichment
        .with_row_index('_row')
        .join(
            mapping.with_columns(pl.lit(True).alias('_matched')),
            on='pathway_id',
            how='left'
        )
        .sort('_row')
        .drop('_row')
    )

    unmatched_mask = joined['_matched'].is_null()
    n_unmatched = int(unmatched_mask.sum())
    if n_unmatched:
        database = enrichment['database'][0] if enrichment.height else 'unknown'
        missing = joined.filter(unmatched_mask)['pathway_id'].to_list()
        logger.warning(
            f"{database}: {n_unmatched} pathway(s) not found in mapping table; "
            f"their member sets are empty: {', '.join(missing[:10])}"
            + (" ..." if len(missing) > 10 else "")
        )

    # Unmatched rows come back with null lists; give them empty member sets
    members = {
        col: pl.Series(
            col,
            [value if value is not None else [] for value in joined[col].to_list()],
            dtype=pl.List(pl.Utf8)
        )
        for col in MEMBER_COLUMNS
    }
    names = [normalise_pathway_name(pid, prefixes) for pid in joined['pathway_id'].to_list()]

    annotated = joined.with_columns(
        *members.values(),
        pl.Series('name', names, dtype=pl.Utf8),
    ).drop('_matched')

    return annotated.select(RECORD_COLUMNS), n_unmatched


def gene_sets(records: pl.DataFrame, column: str = 'gene_ids') -> List[set]:
    """Member gene sets of each record, in row order."""
    return [set(members) for members in records[column].to_list()]
