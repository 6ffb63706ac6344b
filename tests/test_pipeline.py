"""
Test cases for the pathway clustering pipeline.
"""

import json
import shutil

import pytest
import polars as pl
from openpyxl import load_workbook
from tomli_w import dump as tomli_w_dump

from pathclust.exceptions import AnnotationStructureError
from pathclust.pipeline import MANIFEST_NAME, WORKBOOK_NAME, PathwayClusteringPipeline


@pytest.fixture
def config_file(tmp_path, enrichment_file, reactome_file, mapping_file):
    """Configuration for two databases clustered into at most two clusters."""
    config = {
        'input': {
            'enrichment_files': {'GOBP': str(enrichment_file), 'REACTOME': str(reactome_file)},
            'mapping_file': str(mapping_file),
            'annotated_workbook': str(tmp_path / 'finalised.xlsx'),
        },
        'output': {
            'directory': str(tmp_path / 'results'),
            'plots': False,
        },
        'analysis': {
            'nclust': 2,
        },
    }
    path = tmp_path / 'config.toml'
    with open(path, 'wb') as f:
        tomli_w_dump(config, f)
    return path


@pytest.fixture
def clustered(config_file):
    """Pipeline after the clustering phase."""
    pipeline = PathwayClusteringPipeline(str(config_file))
    pipeline.run()
    return pipeline


def _finalise(results_dir, destination, edit=None):
    """Copy the exported workbook, optionally editing it like a reviewer would."""
    exported = results_dir / 'annotation' / WORKBOOK_NAME
    if edit is None:
        shutil.copy(exported, destination)
        return destination
    wb = load_workbook(exported)
    edit(wb)
    wb.save(destination)
    return destination


def test_pipeline_initialization(config_file):
    """Test pipeline initialization."""
    pipeline = PathwayClusteringPipeline(str(config_file))
    assert pipeline.config.nclust == 2
    assert pipeline.config.databases == ['GOBP', 'REACTOME']
    assert pipeline.records == {}


def test_load_inputs(config_file):
    pipeline = PathwayClusteringPipeline(str(config_file))
    pipeline.load_inputs()

    assert list(pipeline.records) == ['GOBP', 'REACTOME']
    gobp = pipeline.records['GOBP']
    assert gobp.height == 5
    assert gobp['name'][0] == 'ALPHA PROCESS'
    assert pipeline.unmatched == {'GOBP': 1, 'REACTOME': 0}


def test_missing_input_file(config_file, enrichment_file):
    enrichment_file.unlink()
    pipeline = PathwayClusteringPipeline(str(config_file))
    with pytest.raises(FileNotFoundError, match="Input file not found"):
        pipeline.load_inputs()


def test_run_writes_outputs(clustered, tmp_path):
    """The clustering phase writes workbook, cluster tables and manifest."""
    results = tmp_path / 'results'
    assert (results / 'annotation' / WORKBOOK_NAME).is_file()
    assert (results / 'clusters' / 'GOBP_clusters.csv').is_file()
    assert (results / 'clusters' / 'GOBP_similarity.csv').is_file()
    assert (results / 'clusters' / 'REACTOME_clusters.csv').is_file()
    assert (results / 'pipeline_config.toml').is_file()
    assert not (results / 'plots').exists()

    with open(results / 'clusters' / MANIFEST_NAME) as f:
        manifest = json.load(f)
    assert manifest['nclust'] == 2
    assert manifest['linkage_method'] == 'average'
    assert manifest['databases']['GOBP'] == {
        'n_pathways': 5,
        'n_clusters': 2,
        'unmatched_rows': 1,
        'degenerate_pairs': 0,
    }
    assert manifest['databases']['REACTOME']['n_clusters'] == 1


def test_run_cluster_assignments(clustered, tmp_path):
    """Pathways sharing genes end up together, ordered by cluster size."""
    ordered = clustered.ordered['GOBP']
    clusters = {}
    for pid, cluster_id in zip(ordered['pathway_id'].to_list(), ordered['cluster_id'].to_list()):
        clusters.setdefault(cluster_id, set()).add(pid)

    cluster_of = {pid: cid for cid, members in clusters.items() for pid in members}
    assert cluster_of['GOBP_ALPHA_PROCESS'] == cluster_of['GOBP_BETA_PROCESS']
    assert cluster_of['GOBP_GAMMA_PROCESS'] == cluster_of['GOBP_DELTA_PROCESS']
    assert cluster_of['GOBP_ALPHA_PROCESS'] != cluster_of['GOBP_GAMMA_PROCESS']

    sizes = [len(clusters[cid]) for cid in dict.fromkeys(ordered['cluster_id'].to_list())]
    assert sizes == sorted(sizes, reverse=True)

    table = pl.read_csv(tmp_path / 'results' / 'clusters' / 'GOBP_clusters.csv')
    assert table['pathway_id'].to_list() == ordered['pathway_id'].to_list()
    assert table['gene_ids'][0] == '1,2,3'


def test_run_exported_workbook(clustered, tmp_path):
    wb = load_workbook(tmp_path / 'results' / 'annotation' / WORKBOOK_NAME)
    assert wb.sheetnames == ['GOBP', 'REACTOME']

    first_cells = [row[0] for row in wb['GOBP'].iter_rows(min_row=2, values_only=True)]
    headers = [value for value in first_cells if str(value).startswith('Pathway #')]
    assert len(headers) == 2
    assert len(first_cells) == 7


def test_summarise(clustered, config_file, tmp_path):
    """Summaries from an unedited copy of the exported workbook."""
    _finalise(tmp_path / 'results', tmp_path / 'finalised.xlsx')

    pipeline = PathwayClusteringPipeline(str(config_file))
    summary = pipeline.summarise()

    assert summary['database'].to_list() == ['GOBP', 'GOBP', 'REACTOME']
    assert summary['n_pathways'].sum() == 6

    gobp = clustered.ordered['GOBP']
    gamma_cluster = gobp.filter(pl.col('pathway_id') == 'GOBP_GAMMA_PROCESS')['cluster_id'][0]
    row = summary.filter((pl.col('database') == 'GOBP') & (pl.col('cluster_id') == gamma_cluster))
    assert row['pooled_ratio'][0] == pytest.approx(5 / 70)

    summary_dir = tmp_path / 'results' / 'summary'
    assert (summary_dir / 'cluster_summary.csv').is_file()
    annotated = pl.read_csv(summary_dir / 'annotated_pathways.csv')
    assert annotated.height == 6


def test_summarise_with_annotations(clustered, config_file, tmp_path):
    def label(wb):
        for row in wb['GOBP'].iter_rows(min_row=2):
            if row[0].value == 'Pathway #2':
                row[0].value = 'Pathway #2: Stress response'

    _finalise(tmp_path / 'results', tmp_path / 'finalised.xlsx', edit=label)
    summary = PathwayClusteringPipeline(str(config_file)).summarise()
    labelled = summary.filter(pl.col('cluster_id') == 2, pl.col('database') == 'GOBP')
    assert labelled['annotation'][0] == 'Stress response'


def test_summarise_missing_header_row(clustered, config_file, tmp_path):
    """Deleting a cluster header row aborts the summary."""
    def drop_header(wb):
        ws = wb['GOBP']
        for row in ws.iter_rows(min_row=2):
            if row[0].value == 'Pathway #2':
                ws.delete_rows(row[0].row)
                break

    _finalise(tmp_path / 'results', tmp_path / 'finalised.xlsx', edit=drop_header)
    pipeline = PathwayClusteringPipeline(str(config_file))
    with pytest.raises(AnnotationStructureError, match="expected 2"):
        pipeline.summarise()
    assert not (tmp_path / 'results' / 'summary' / 'cluster_summary.csv').exists()


def test_summarise_before_clustering(config_file, tmp_path):
    pipeline = PathwayClusteringPipeline(str(config_file))
    with pytest.raises(FileNotFoundError, match="Run the clustering step first"):
        pipeline.summarise(workbook=tmp_path / 'finalised.xlsx')


def test_summarise_without_workbook(tmp_path, enrichment_file, mapping_file):
    config = {
        'input': {'enrichment_files': {'GOBP': str(enrichment_file)}, 'mapping_file': str(mapping_file)},
        'output': {'directory': str(tmp_path / 'results')},
        'analysis': {},
    }
    path = tmp_path / 'no_workbook.toml'
    with open(path, 'wb') as f:
        tomli_w_dump(config, f)

    with pytest.raises(ValueError, match="No annotated workbook configured"):
        PathwayClusteringPipeline(str(path)).summarise()


def test_save_results_without_run(config_file, tmp_path, caplog):
    pipeline = PathwayClusteringPipeline(str(config_file))
    pipeline.save_results()
    assert "No results to save" in caplog.text
    assert not (tmp_path / 'results' / 'annotation').exists()


def test_recompute_statistics(tmp_path, enrichment_file, mapping_file):
    config = {
        'input': {'enrichment_files': {'GOBP': str(enrichment_file)}, 'mapping_file': str(mapping_file)},
        'output': {'directory': str(tmp_path / 'results'), 'plots': False},
        'analysis': {'recompute_statistics': True, 'query_size': 40, 'universe_size': 20000},
    }
    path = tmp_path / 'recompute.toml'
    with open(path, 'wb') as f:
        tomli_w_dump(config, f)

    pipeline = PathwayClusteringPipeline(str(path))
    pipeline.load_inputs()
    records = pipeline.records['GOBP']
    assert records['p_value'][0] != pytest.approx(1e-5)
    assert all(q >= p for p, q in zip(records['p_value'].to_list(), records['q_value'].to_list()))


def test_run_with_plots(config_file, tmp_path):
    pipeline = PathwayClusteringPipeline(str(config_file))
    pipeline.config.config['output']['plots'] = True
    pipeline.run()

    plots = tmp_path / 'results' / 'plots'
    assert (plots / 'GOBP_similarity_heatmap.png').is_file()
    assert (plots / 'GOBP_embedding.png').is_file()
    assert (plots / 'REACTOME_similarity_heatmap.png').is_file()
    assert not (plots / 'REACTOME_embedding.png').exists()

    _finalise(tmp_path / 'results', tmp_path / 'finalised.xlsx')
    pipeline.summarise()
    assert (plots / 'cluster_summary.png').is_file()


def test_summarise_restores_member_order(clustered, config_file, tmp_path):
    """Members swapped inside a block are written back in q-value order."""
    def swap_members(wb):
        ws = wb['GOBP']
        # Row 2 is the first cluster header; rows 3 and 4 are its two most significant members
        first, second = list(ws.iter_rows(min_row=3, max_row=4))
        for a, b in zip(first, second):
            a.value, b.value = b.value, a.value

    _finalise(tmp_path / 'results', tmp_path / 'finalised.xlsx', edit=swap_members)
    PathwayClusteringPipeline(str(config_file)).summarise()

    annotated = pl.read_csv(tmp_path / 'results' / 'summary' / 'annotated_pathways.csv')
    gobp = annotated.filter(pl.col('database') == 'GOBP')
    assert gobp['pathway_id'].to_list() == clustered.ordered['GOBP']['pathway_id'].to_list()


def test_save_results_output_override(config_file, tmp_path):
    """Results saved to another directory are found again by summarise()."""
    pipeline = PathwayClusteringPipeline(str(config_file))
    pipeline.load_inputs()
    pipeline.cluster()
    elsewhere = tmp_path / 'elsewhere'
    pipeline.save_results(output_dir=str(elsewhere))

    assert (elsewhere / 'clusters' / MANIFEST_NAME).is_file()
    assert not (tmp_path / 'results' / 'clusters').exists()

    _finalise(elsewhere, tmp_path / 'finalised.xlsx')
    summary = pipeline.summarise()
    assert summary.height == 3
    assert (elsewhere / 'summary' / 'cluster_summary.csv').is_file()
