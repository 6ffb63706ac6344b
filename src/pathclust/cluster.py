"""
Hierarchical clustering of pathways on Jaccard dissimilarity.
"""

import logging

import numpy as np
import polars as pl
from scipy.cluster.hierarchy import cut_tree, linkage
from scipy.spatial.distance import pdist

from .stats import SimilarityMatrix

logger = logging.getLogger(__name__)

ASSIGNMENT_SCHEMA = {'pathway_id': pl.Utf8, 'cluster_id': pl.Int64}


def similarity_to_dissimilarity(similarity: SimilarityMatrix) -> np.ndarray:
    """Dissimilarity matrix ``1 - similarity``."""
    return 1.0 - similarity.values


def cluster_pathways(
    similarity: SimilarityMatrix,
    nclust: int = 15,
    method: str = 'average'
) -> pl.DataFrame:
    """
    Group pathways into flat clusters.

    Rows of the dissimilarity matrix are treated as observations; their pairwise
    Euclidean distances feed an agglomerative linkage and the dendrogram is cut
    into exactly ``min(nclust, N)`` clusters. Labels run from 1 and are numbered
    in order of first appearance, so identical inputs give identical labels.

    Args:
        similarity: Pathway similarity matrix
        nclust: Number of clusters to cut the dendrogram into
        method: Linkage method passed to scipy ('average' is UPGMA)

    Returns:
        DataFrame with pathway_id and cluster_id columns, in matrix order
    """
    if nclust < 1:
        raise ValueError(f"nclust must be at least 1, got {nclust}")

    n_pathways = len(similarity)
    if n_pathways == 0:
        return pl.DataFrame(schema=ASSIGNMENT_SCHEMA)
    if n_pathways == 1:
        return pl.DataFrame(
            {'pathway_id': similarity.pathway_ids, 'cluster_id': [1]},
            schema=ASSIGNMENT_SCHEMA
        )

    n_clusters = min(nclust, n_pathways)
    if n_clusters < nclust:
        logger.warning(f"Only {n_pathways} pathways available; cutting into {n_clusters} clusters instead of {nclust}")

    distances = pdist(similarity_to_dissimilarity(similarity), metric='euclidean')
    tree = linkage(distances, method=method)
    raw_labels = cut_tree(tree, n_clusters=n_clusters).ravel()

    relabel = {}
    labels = []
    for raw in raw_labels:
        if raw not in relabel:
            relabel[raw] = len(relabel) + 1
        labels.append(relabel[raw])

    return pl.DataFrame(
        {'pathway_id': similarity.pathway_ids, 'cluster_id': labels},
        schema=ASSIGNMENT_SCHEMA
    )


def cluster_sizes(assignment: pl.DataFrame) -> pl.DataFrame:
    """Number of member pathways per cluster, by ascending cluster ID."""
    return (
        assignment
        .group_by('cluster_id')
        .agg(pl.len().alias('n_pathways'))
        .sort('cluster_id')
    )


def order_by_cluster(records: pl.DataFrame, assignment: pl.DataFrame) -> pl.DataFrame:
    """
    Attach cluster labels to pathway records and order them for annotation.

    Clusters are ordered by descending size with ties broken by ascending cluster
    ID; members within a cluster by ascending q-value, then p-value, then ID.

    Args:
        records: Annotated pathway records of one database
        assignment: Cluster assignment for the same pathways

    Returns:
        Records with a cluster_id column, ordered by cluster and significance
    """
    missing = set(records['pathway_id'].to_list()) - set(assignment['pathway_id'].to_list())
    if missing:
        raise ValueError(f"{len(missing)} pathway(s) have no cluster assignment: {', '.join(sorted(missing)[:10])}")

    sizes = cluster_sizes(assignment).rename({'n_pathways': '_cluster_size'})
    ordered = (
        records
        .join(assignment, on='pathway_id', how='inner')
        .join(sizes, on='cluster_id', how='left')
        .sort(
            ['_cluster_size', 'cluster_id', 'q_value', 'p_value', 'pathway_id'],
            descending=[True, False, False, False, False],
            nulls_last=True
        )
        .drop('_cluster_size')
    )
    return ordered.select(['cluster_id'] + [col for col in ordered.columns if col != 'cluster_id'])
