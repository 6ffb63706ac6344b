"""
Similarity and overlap statistics for the pathway clustering pipeline.
"""

from typing import Iterable, List, Sequence
import logging

import numba as nb
import numpy as np
import polars as pl
from scipy import stats
from statsmodels.stats.multitest import multipletests

logger = logging.getLogger(__name__)


@nb.njit(parallel=True)
def _pairwise_jaccard(membership):
    """
    Pairwise Jaccard similarity between the rows of a binary membership matrix.

    Args:
        membership: 2D uint8 array, pathways x genes

    Returns:
        Symmetric 2D float array with a unit diagonal; rows with empty
        unions score 0
    """
    n_rows = membership.shape[0]
    n_genes = membership.shape[1]
    result = np.zeros((n_rows, n_rows), dtype=np.float64)

    # Row i owns cells (i, j) and (j, i) for j > i, so iterations never collide
    for i in nb.prange(n_rows):
        result[i, i] = 1.0
        for j in range(i + 1, n_rows):
            intersection = 0
            union = 0
            for k in range(n_genes):
                a = membership[i, k] != 0
                b = membership[j, k] != 0
                if a and b:
                    intersection += 1
                if a or b:
                    union += 1
            if union > 0:
                value = intersection / union
                result[i, j] = value
                result[j, i] = value

    return result


def jaccard_similarity(a: Iterable, b: Iterable) -> float:
    """
    Jaccard similarity |a & b| / |a | b| of two gene sets.

    Two empty sets have no defined ratio; they score 0.0 so that pathways
    without members never look alike.
    """
    a = set(a)
    b = set(b)
    union = len(a | b)
    if union == 0:
        return 0.0
    return len(a & b) / union


class SimilarityMatrix:
    """Symmetric pathway x pathway similarity scores with a unit diagonal."""

    def __init__(self, pathway_ids: Sequence[str], values: np.ndarray, degenerate_pairs: int = 0):
        values = np.asarray(values, dtype=np.float64)
        if values.shape != (len(pathway_ids), len(pathway_ids)):
            raise ValueError(
                f"Similarity values have shape {values.shape}, "
                f"expected ({len(pathway_ids)}, {len(pathway_ids)})"
            )
        self.pathway_ids = list(pathway_ids)
        self.values = values
        self.degenerate_pairs = degenerate_pairs
        self._index = {pid: i for i, pid in enumerate(self.pathway_ids)}

    def __len__(self) -> int:
        return len(self.pathway_ids)

    def get(self, a: str, b: str) -> float:
        """Similarity between two pathways by ID."""
        return float(self.values[self._index[a], self._index[b]])

    def to_frame(self) -> pl.DataFrame:
        """Square DataFrame with a leading pathway_id column."""
        data = {'pathway_id': self.pathway_ids}
        for i, pid in enumerate(self.pathway_ids):
            data[pid] = self.values[:, i]
        return pl.DataFrame(data)


def compute_similarity_matrix(pathway_ids: Sequence[str], gene_sets: Sequence[Iterable]) -> SimilarityMatrix:
    """
    Compute the full Jaccard similarity matrix between pathways.

    Args:
        pathway_ids: Pathway IDs, one per gene set
        gene_sets: Member gene identifiers of each pathway

    Returns:
        SimilarityMatrix over the pathways in input order
    """
    pathway_ids = list(pathway_ids)
    gene_sets = [set(members) for members in gene_sets]
    if len(pathway_ids) != len(gene_sets):
        raise ValueError("pathway_ids and gene_sets must have the same length")
    if len(set(pathway_ids)) != len(pathway_ids):
        raise ValueError("pathway_ids must be unique")

    n_pathways = len(pathway_ids)
    if n_pathways == 0:
        return SimilarityMatrix([], np.zeros((0, 0)))

    genes = sorted(set().union(*gene_sets))
    gene_index = {gene: k for k, gene in enumerate(genes)}
    membership = np.zeros((n_pathways, max(len(genes), 1)), dtype=np.uint8)
    for i, members in enumerate(gene_sets):
        for gene in members:
            membership[i, gene_index[gene]] = 1

    values = _pairwise_jaccard(membership)

    n_empty = sum(1 for members in gene_sets if not members)
    degenerate_pairs = n_empty * (n_empty - 1) // 2
    if n_empty:
        logger.warning(
            f"{n_empty} pathway(s) have no member genes; "
            f"{degenerate_pairs} empty-vs-empty pair(s) scored as similarity 0"
        )

    return SimilarityMatrix(pathway_ids, values, degenerate_pairs=degenerate_pairs)


def hypergeometric_overlap_pvalue(overlap: int, pathway_size: int, query_size: int, universe_size: int) -> float:
    """
    Upper-tail hypergeometric probability P(X >= overlap).

    Args:
        overlap: Genes shared by the query and the pathway (k)
        pathway_size: Genes in the pathway (K)
        query_size: Genes in the query list (n)
        universe_size: Genes in the background universe (N)

    Returns:
        p-value
    """
    if overlap <= 0:
        return 1.0
    return float(stats.hypergeom.sf(overlap - 1, universe_size, pathway_size, query_size))


def fisher_overlap_pvalue(overlap: int, pathway_size: int, query_size: int, universe_size: int) -> float:
    """
    One-sided Fisher's exact test for over-representation of the query in a pathway.

    Returns:
        p-value
    """
    table = [
        [overlap, query_size - overlap],
        [pathway_size - overlap, universe_size - query_size - pathway_size + overlap],
    ]
    if min(min(row) for row in table) < 0:
        raise ValueError(
            f"Inconsistent overlap counts: k={overlap}, K={pathway_size}, "
            f"n={query_size}, N={universe_size}"
        )
    _, p_value = stats.fisher_exact(table, alternative='greater')
    return float(p_value)


def benjamini_hochberg(p_values, alpha: float = 0.05) -> List[float]:
    """
    Benjamini-Hochberg FDR q-values.

    Args:
        p_values: Array of p-values
        alpha: Significance level

    Returns:
        List of corrected p-values (q-values)
    """
    if len(p_values) == 0:
        raise ValueError("Input p-values array cannot be empty")

    _, pvals_corrected, _, _ = multipletests(
        np.asarray(p_values, dtype=np.float64),
        alpha=alpha,
        method='fdr_bh'
    )
    return pvals_corrected.tolist()


def recompute_overlap_statistics(
    records: pl.DataFrame,
    query_size: int,
    universe_size: int,
    method: str = 'hypergeometric'
) -> pl.DataFrame:
    """
    Recompute p- and q-values of enrichment records from their overlap counts.

    Args:
        records: Enrichment records of a single database
        query_size: Size of the submitted gene list
        universe_size: Size of the background gene universe
        method: 'hypergeometric' or 'fisher'

    Returns:
        Records with p_value and q_value replaced
    """
    if method == 'hypergeometric':
        test = hypergeometric_overlap_pvalue
    elif method == 'fisher':
        test = fisher_overlap_pvalue
    else:
        raise ValueError(f"Unknown overlap test: {method}")

    if records.height == 0:
        return records

    p_values = [
        test(int(k), int(K), query_size, universe_size)
        for k, K in zip(records['genes_in_overlap'].to_list(), records['genes_in_pathway'].to_list())
    ]
    q_values = benjamini_hochberg(p_values)

    return records.with_columns(
        pl.Series('p_value', p_values, dtype=pl.Float64),
        pl.Series('q_value', q_values, dtype=pl.Float64),
    )


def neg_log10(values, floor: float = np.finfo(np.float64).tiny) -> np.ndarray:
    """-log10 of values clipped below at ``floor`` so zeros stay finite."""
    return -np.log10(np.clip(np.asarray(values, dtype=np.float64), floor, None))
