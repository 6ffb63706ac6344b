"""Main pipeline implementation for pathway clustering and cluster summaries."""

import json
import logging
import platform
import time
from pathlib import Path
from typing import Dict, Optional

import polars as pl
from tqdm.auto import tqdm

from pathclust.config import PipelineConfig
from pathclust.data import annotate_pathways, gene_sets, load_enrichment_tables, load_pathway_mapping
from pathclust.stats import SimilarityMatrix, compute_similarity_matrix, recompute_overlap_statistics
from pathclust.cluster import cluster_pathways, order_by_cluster
from pathclust.report import read_annotation_workbook, summarise_annotations, write_annotation_workbook
from pathclust.utils import clean_for_json, ensure_dir

# Configure tqdm to work properly on macOS
is_mac = platform.system() == 'Darwin'
tqdm_kwargs = {
    'position': 0,
    'leave': True,
    'ncols': 100,
    'dynamic_ncols': True,
    'ascii': is_mac,
}

WORKBOOK_NAME = 'pathway_clusters.xlsx'
MANIFEST_NAME = 'cluster_manifest.json'


class PathwayClusteringPipeline:
    """Cluster enriched pathways per database and summarise annotated clusters.

    A run has two phases separated by a manual checkpoint:

    1. ``run()`` loads the enrichment and mapping tables, clusters every
       database's pathways and exports an annotatable workbook.
    2. ``summarise()`` reads the reviewer's finalised copy of that workbook and
       writes per-cluster summary statistics.
    """

    def __init__(self, config_path: str):
        """Initialise the pipeline with a configuration file.

        Args:
            config_path: Path to the TOML configuration file
        """
        self.config = PipelineConfig.load_config(config_path)
        self.logger = logging.getLogger(__name__)
        self.records: Dict[str, pl.DataFrame] = {}
        self.unmatched: Dict[str, int] = {}
        self.similarities: Dict[str, SimilarityMatrix] = {}
        self.assignments: Dict[str, pl.DataFrame] = {}
        self.ordered: Dict[str, pl.DataFrame] = {}

    def _check_input_files(self, files: Dict[str, Path]):
        for file_key, file_path in files.items():
            if not Path(file_path).is_file():
                error_msg = f"Input file not found: {file_path} (specified as {file_key})"
                self.logger.error(error_msg)
                raise FileNotFoundError(error_msg)

    def load_inputs(self):
        """Load enrichment tables and the mapping table and join them per database."""
        self.logger.debug("Starting to load input data files")
        files = {f"enrichment_files.{db}": path for db, path in self.config.enrichment_files.items()}
        files['mapping_file'] = self.config.mapping_file
        self._check_input_files(files)

        mapping = load_pathway_mapping(
            self.config.mapping_file,
            column_map=self.config.mapping_columns,
            separator=self.config.separator
        )
        enrichment = load_enrichment_tables(
            self.config.enrichment_files,
            column_map=self.config.enrichment_columns,
            separator=self.config.separator
        )

        for database, table in enrichment.items():
            if self.config.recompute_statistics:
                self.logger.info(f"{database}: recomputing overlap p-values and BH q-values")
                table = recompute_overlap_statistics(
                    table,
                    query_size=self.config.query_size,
                    universe_size=self.config.universe_size,
                    method=self.config.analysis_params.get('overlap_test', 'hypergeometric')
                )
            records, n_unmatched = annotate_pathways(table, mapping, prefixes=self.config.strip_prefixes)
            self.records[database] = records
            self.unmatched[database] = n_unmatched

        total_unmatched = sum(self.unmatched.values())
        self.logger.info(
            f"Loaded {sum(r.height for r in self.records.values())} pathways from "
            f"{len(self.records)} database(s); {total_unmatched} unmatched in mapping table"
        )
        self.logger.debug("Finished loading input data files")

    def cluster(self):
        """Compute similarity matrices and cluster assignments for every database."""
        nclust = self.config.nclust
        method = self.config.linkage_method
        self.logger.info(f"Clustering pathways into up to {nclust} clusters ({method} linkage)")

        for database, records in tqdm(self.records.items(), desc="Clustering databases", **tqdm_kwargs):
            similarity = compute_similarity_matrix(records['pathway_id'].to_list(), gene_sets(records))
            assignment = cluster_pathways(similarity, nclust=nclust, method=method)
            self.similarities[database] = similarity
            self.assignments[database] = assignment
            self.ordered[database] = order_by_cluster(records, assignment)
            self.logger.info(
                f"{database}: {records.height} pathways in "
                f"{assignment['cluster_id'].n_unique()} clusters"
            )

    def run(self):
        """Run the clustering phase and export the annotation workbook."""
        self.logger.info("Starting pathway clustering pipeline")
        start_time = time.time()

        self.logger.info("Step 1: Loading enrichment results")
        self.load_inputs()

        self.logger.info("Step 2: Clustering pathways")
        self.cluster()

        self.logger.info("Step 3: Saving results")
        self.save_results()

        elapsed_time = time.time() - start_time
        self.logger.info(f"Clustering completed in {elapsed_time:.2f} seconds")

    def save_results(self, output_dir: Optional[str] = None):
        """Save the annotation workbook, cluster tables, manifest and plots.

        Args:
            output_dir: Optional output directory path. If not provided,
                        uses the directory from the configuration. An override
                        becomes the configured directory, so a later summarise()
                        reads the manifest written here.
        """
        if not self.ordered:
            self.logger.warning("No results to save. Run the pipeline first.")
            return

        if output_dir:
            self.config.config['output']['directory'] = str(output_dir)
        output_path = self.config.get_output_path()
        clusters_path = ensure_dir(output_path / 'clusters')

        workbook_file = write_annotation_workbook(self.ordered, output_path / 'annotation' / WORKBOOK_NAME)

        manifest = {
            'created': time.strftime('%Y-%m-%d %H:%M:%S'),
            'workbook': str(workbook_file),
            'nclust': self.config.nclust,
            'linkage_method': self.config.linkage_method,
            'databases': {},
        }
        for database, ordered in self.ordered.items():
            flat = ordered.with_columns(
                pl.col('gene_symbols').list.join(', '),
                pl.col('gene_ids').list.join(','),
            )
            flat.write_csv(clusters_path / f"{database}_clusters.csv")
            self.similarities[database].to_frame().write_csv(clusters_path / f"{database}_similarity.csv")

            manifest['databases'][database] = {
                'n_pathways': ordered.height,
                'n_clusters': self.assignments[database]['cluster_id'].n_unique(),
                'unmatched_rows': self.unmatched.get(database, 0),
                'degenerate_pairs': self.similarities[database].degenerate_pairs,
            }

        manifest_file = clusters_path / MANIFEST_NAME
        with open(manifest_file, 'w') as f:
            json.dump(clean_for_json(manifest), f, indent=2)
        self.logger.info(f"Saved cluster manifest to {manifest_file}")

        self.config.save_config(output_path / 'pipeline_config.toml')

        if self.config.make_plots:
            self._plot_clusters(ensure_dir(output_path / 'plots'))

    def _plot_clusters(self, plots_path: Path):
        from pathclust.visualise import plot_pathway_embedding, plot_similarity_heatmap

        for database, similarity in self.similarities.items():
            if len(similarity) == 0:
                continue
            assignment = self.assignments[database]
            heatmap = plot_similarity_heatmap(
                similarity, assignment, plots_path / f"{database}_similarity_heatmap.png",
                title=f"{database} pathway similarity"
            )
            self.logger.info(f"Saved heatmap to {heatmap}")
            if len(similarity) < 3:
                self.logger.warning(f"{database}: too few pathways for an embedding plot")
                continue
            embedding = plot_pathway_embedding(
                similarity, assignment, plots_path / f"{database}_embedding.png",
                title=f"{database} pathway clusters"
            )
            self.logger.info(f"Saved embedding plot to {embedding}")

    def load_manifest(self) -> dict:
        """Load the manifest written by the clustering phase."""
        manifest_file = self.config.get_output_path('clusters') / MANIFEST_NAME
        if not manifest_file.is_file():
            raise FileNotFoundError(
                f"Cluster manifest not found: {manifest_file}. Run the clustering step first."
            )
        with open(manifest_file) as f:
            return json.load(f)

    def summarise(self, workbook: Optional[Path] = None) -> pl.DataFrame:
        """Summarise clusters from the finalised annotation workbook.

        Args:
            workbook: Finalised workbook path; defaults to input.annotated_workbook

        Returns:
            ClusterSummary DataFrame for all databases
        """
        workbook = Path(workbook) if workbook else self.config.annotated_workbook
        if workbook is None:
            raise ValueError("No annotated workbook configured (input.annotated_workbook)")

        manifest = self.load_manifest()
        expected = {db: info['n_clusters'] for db, info in manifest['databases'].items()}
        self.logger.info(f"Reading finalised annotation workbook {workbook}")
        annotated = read_annotation_workbook(workbook, expected)

        summary = summarise_annotations(annotated)

        summary_path = self.config.get_output_path('summary')
        summary.write_csv(summary_path / 'cluster_summary.csv')
        if annotated:
            pl.concat(list(annotated.values())).write_csv(summary_path / 'annotated_pathways.csv')
        self.logger.info(f"Saved summary of {summary.height} clusters to {summary_path}")

        if self.config.make_plots and summary.height > 0:
            from pathclust.visualise import plot_cluster_summary
            plot_file = plot_cluster_summary(summary, self.config.get_output_path('plots') / 'cluster_summary.png')
            self.logger.info(f"Saved cluster summary plot to {plot_file}")

        return summary
