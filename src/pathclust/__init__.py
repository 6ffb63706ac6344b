"""
Pathway Clustering Pipeline
===========================

A Python package for clustering enriched pathways by shared member genes and
summarising reviewer-annotated pathway clusters.
"""

from .pipeline import PathwayClusteringPipeline
from .config import PipelineConfig
from .data import (
    load_enrichment_table as load_enrichment_table,
    load_enrichment_tables as load_enrichment_tables,
    load_pathway_mapping as load_pathway_mapping,
    normalise_pathway_name as normalise_pathway_name,
    annotate_pathways as annotate_pathways,
)
from .stats import (
    SimilarityMatrix as SimilarityMatrix,
    jaccard_similarity as jaccard_similarity,
    compute_similarity_matrix as compute_similarity_matrix,
    hypergeometric_overlap_pvalue as hypergeometric_overlap_pvalue,
    fisher_overlap_pvalue as fisher_overlap_pvalue,
    benjamini_hochberg as benjamini_hochberg,
    recompute_overlap_statistics as recompute_overlap_statistics,
)
from .cluster import (
    similarity_to_dissimilarity as similarity_to_dissimilarity,
    cluster_pathways as cluster_pathways,
    cluster_sizes as cluster_sizes,
    order_by_cluster as order_by_cluster,
)
from .report import (
    write_annotation_workbook as write_annotation_workbook,
    read_annotation_workbook as read_annotation_workbook,
    summarise_clusters as summarise_clusters,
    summarise_annotations as summarise_annotations,
)
from .exceptions import PathclustError, AnnotationStructureError
from .utils import setup_logging as setup_logging, ensure_dir as ensure_dir

__version__ = "0.1.0"

__all__ = [
    "PathwayClusteringPipeline",
    "PipelineConfig",
    "load_enrichment_table",
    "load_enrichment_tables",
    "load_pathway_mapping",
    "normalise_pathway_name",
    "annotate_pathways",
    "SimilarityMatrix",
    "jaccard_similarity",
    "compute_similarity_matrix",
    "hypergeometric_overlap_pvalue",
    "fisher_overlap_pvalue",
    "benjamini_hochberg",
    "recompute_overlap_statistics",
    "similarity_to_dissimilarity",
    "cluster_pathways",
    "cluster_sizes",
    "order_by_cluster",
    "write_annotation_workbook",
    "read_annotation_workbook",
    "summarise_clusters",
    "summarise_annotations",
    "PathclustError",
    "AnnotationStructureError",
    "setup_logging",
    "ensure_dir",
]
