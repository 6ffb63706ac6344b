"""
Static plots of pathway similarity, pathway clusters and cluster summaries.
"""

from typing import Any, Dict
from pathlib import Path
import logging

import numpy as np
import polars as pl
import matplotlib.pyplot as plt
import pandas as pd
import seaborn as sns

from sklearn.decomposition import PCA
from sklearn.manifold import TSNE

from pathclust.cluster import similarity_to_dissimilarity
from pathclust.stats import SimilarityMatrix

logger = logging.getLogger(__name__)


def _cluster_order(similarity: SimilarityMatrix, assignment: pl.DataFrame) -> pd.DataFrame:
    """Similarity as a pandas frame with rows and columns grouped by cluster."""
    labels = dict(zip(assignment['pathway_id'].to_list(), assignment['cluster_id'].to_list()))
    order = sorted(
        range(len(similarity)),
        key=lambda i: (labels.get(similarity.pathway_ids[i], 0), i)
    )
    ids = [similarity.pathway_ids[i] for i in order]
    values = similarity.values[np.ix_(order, order)]
    return pd.DataFrame(values, index=ids, columns=ids)


def plot_similarity_heatmap(
    similarity: SimilarityMatrix,
    assignment: pl.DataFrame,
    output_file: Path,
    title: str = None
) -> Path:
    """
    Heatmap of pathway Jaccard similarity, grouped by cluster.

    Args:
        similarity: Pathway similarity matrix
        assignment: Cluster assignment for the same pathways
        output_file: Destination image path
        title: Optional plot title

    Returns:
        Path of the saved figure
    """
    if len(similarity) == 0:
        raise ValueError("Input data cannot be empty")

    frame = _cluster_order(similarity, assignment)
    size = min(4 + 0.15 * len(frame), 30)

    fig, ax = plt.subplots(figsize=(size, size))
    sns.heatmap(
        frame, cmap='viridis', vmin=0, vmax=1, square=True, ax=ax,
        xticklabels=len(frame) <= 60, yticklabels=len(frame) <= 60,
        cbar_kws={'label': 'Jaccard similarity'}
    )

    # Outline each cluster block on the diagonal
    labels = dict(zip(assignment['pathway_id'].to_list(), assignment['cluster_id'].to_list()))
    start = 0
    cluster_labels = [labels.get(pid) for pid in frame.index]
    for i in range(1, len(cluster_labels) + 1):
        if i == len(cluster_labels) or cluster_labels[i] != cluster_labels[start]:
            ax.add_patch(plt.Rectangle((start, start), i - start, i - start,
                                       fill=False, edgecolor='white', linewidth=1.5))
            start = i

    ax.set_title(title or "Pathway similarity")
    fig.tight_layout()

    output_file = Path(output_file)
    output_file.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(output_file, bbox_inches='tight', dpi=150)
    plt.close(fig)
    return output_file


def embed_pathways(similarity: SimilarityMatrix, method: str = 'pca') -> Dict[str, Any]:
    """
    Two-dimensional embedding of pathways from their dissimilarities.

    Args:
        similarity: Pathway similarity matrix
        method: 'pca' (on dissimilarity profiles) or 'tsne' (on precomputed dissimilarity)

    Returns:
        Dict with coordinates, pathway_ids and variance_explained (None for t-SNE)
    """
    n_pathways = len(similarity)
    if n_pathways == 0:
        raise ValueError("Input data cannot be empty")
    if n_pathways < 3:
        raise ValueError("At least three pathways are needed for an embedding")

    dissimilarity = similarity_to_dissimilarity(similarity)

    if method.lower() == 'pca':
        model = PCA(n_components=2)
        coordinates = model.fit_transform(dissimilarity)
        variance_explained = model.explained_variance_ratio_
    elif method.lower() == 'tsne':
        # Perplexity must stay below the number of samples
        perplexity = min(30.0, max(1.0, (n_pathways - 1) / 3))
        model = TSNE(n_components=2, metric='precomputed', init='random',
                     random_state=42, perplexity=perplexity)
        coordinates = model.fit_transform(dissimilarity)
        variance_explained = None
    else:
        raise ValueError(f"Unknown embedding method: {method}")

    return {
        'coordinates': coordinates,
        'pathway_ids': list(similarity.pathway_ids),
        'variance_explained': variance_explained,
    }


def plot_pathway_embedding(
    similarity: SimilarityMatrix,
    assignment: pl.DataFrame,
    output_file: Path,
    method: str = 'pca',
    title: str = None
) -> Path:
    """Scatter of the pathway embedding coloured by cluster."""
    result = embed_pathways(similarity, method=method)
    labels = dict(zip(assignment['pathway_id'].to_list(), assignment['cluster_id'].to_list()))

    frame = pd.DataFrame({
        'x': result['coordinates'][:, 0],
        'y': result['coordinates'][:, 1],
        'cluster': [f"#{labels.get(pid)}" for pid in result['pathway_ids']],
    })

    fig, ax = plt.subplots(figsize=(9, 7))
    sns.scatterplot(data=frame, x='x', y='y', hue='cluster', palette='tab20', s=40, ax=ax)

    if result['variance_explained'] is not None:
        ax.set_xlabel(f"Component 1 ({result['variance_explained'][0]:.1%})")
        ax.set_ylabel(f"Component 2 ({result['variance_explained'][1]:.1%})")
    else:
        ax.set_xlabel("Component 1")
        ax.set_ylabel("Component 2")

    ax.set_title(title or f"Pathway clusters ({method.upper()})")
    ax.legend(title='Cluster', bbox_to_anchor=(1.02, 1), loc='upper left', fontsize='small')
    ax.grid(True, linestyle='--', alpha=0.7)
    fig.tight_layout()

    output_file = Path(output_file)
    output_file.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(output_file, bbox_inches='tight', dpi=150)
    plt.close(fig)
    return output_file


def plot_cluster_summary(summary: pl.DataFrame, output_file: Path, title: str = None) -> Path:
    """
    Bubble plot of cluster summaries: pooled ratio against mean -log10(q).

    Bubble size is the number of member pathways; colour is the source database.
    """
    if summary.height == 0:
        raise ValueError("Input data cannot be empty")

    frame = pd.DataFrame(summary.to_dict(as_series=False))
    frame['label'] = [
        annotation if annotation else f"Pathway #{cluster_id}"
        for annotation, cluster_id in zip(frame['annotation'], frame['cluster_id'])
    ]

    fig, ax = plt.subplots(figsize=(10, max(4, 0.35 * len(frame))))
    sns.scatterplot(
        data=frame, x='pooled_ratio', y='mean_neg_log10_q', size='n_pathways',
        hue='database', sizes=(40, 400), alpha=0.8, ax=ax
    )
    for _, row in frame.iterrows():
        ax.annotate(row['label'], (row['pooled_ratio'], row['mean_neg_log10_q']),
                    fontsize=7, xytext=(4, 4), textcoords='offset points')

    ax.set_xlabel("Pooled overlap ratio (k/K)")
    ax.set_ylabel("Mean -log10(FDR q-value)")
    ax.set_title(title or "Pathway cluster summary")
    ax.legend(bbox_to_anchor=(1.02, 1), loc='upper left', fontsize='small')
    ax.grid(True, linestyle='--', alpha=0.7)
    fig.tight_layout()

    output_file = Path(output_file)
    output_file.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(output_file, bbox_inches='tight', dpi=150)
    plt.close(fig)
    return output_file
