"""Shared fixtures for the pathway clustering tests."""

import matplotlib
matplotlib.use("Agg")

import polars as pl
import pytest

ENRICHMENT_TSV = (
    "Gene Set Name\t# Genes in Gene Set (K)\tDescription\t# Genes in Overlap (k)\tk/K\tp-value\tFDR q-value\n"
    "GOBP_ALPHA_PROCESS\t30\tAlpha process\t3\t0.1\t1e-5\t1e-3\n"
    "GOBP_BETA_PROCESS\t40\tBeta process\t3\t0.075\t1e-4\t5e-3\n"
    "GOBP_GAMMA_PROCESS\t20\tGamma process\t2\t0.1\t1e-6\t1e-4\n"
    "GOBP_DELTA_PROCESS\t50\tDelta process\t3\t0.06\t1e-3\t2e-2\n"
    "GOBP_ORPHAN_PROCESS\t10\tNot in mapping\t1\t0.1\t1e-2\t5e-2\n"
)

MAPPING_TSV = (
    "STANDARD_NAME\tSYSTEMATIC_NAME\tGENE_SYMBOLS\tGENE_IDS\n"
    "GOBP_ALPHA_PROCESS\tM1\tG1,G2,G3\t1,2,3\n"
    "GOBP_BETA_PROCESS\tM2\tG2,G3,G4\t2,3,4\n"
    "GOBP_GAMMA_PROCESS\tM3\tG10,G11\t10,11\n"
    "GOBP_DELTA_PROCESS\tM4\tG10, G11, G12\t10, 11, 12\n"
    "REACTOME_EPSILON\tM5\tG20,G21\t20,21\n"
)

REACTOME_TSV = (
    "Gene Set Name\t# Genes in Gene Set (K)\tDescription\t# Genes in Overlap (k)\tk/K\tp-value\tFDR q-value\n"
    "REACTOME_EPSILON\t12\tEpsilon\t2\t0.1667\t1e-4\t1e-3\n"
)

RECORD_SCHEMA = {
    'database': pl.Utf8,
    'pathway_id': pl.Utf8,
    'name': pl.Utf8,
    'description': pl.Utf8,
    'genes_in_pathway': pl.Int64,
    'genes_in_overlap': pl.Int64,
    'ratio': pl.Float64,
    'p_value': pl.Float64,
    'q_value': pl.Float64,
    'accession': pl.Utf8,
    'gene_symbols': pl.List(pl.Utf8),
    'gene_ids': pl.List(pl.Utf8),
}


@pytest.fixture
def enrichment_file(tmp_path):
    """GO biological process enrichment table in MSigDB overlap format."""
    path = tmp_path / "gobp.tsv"
    path.write_text(ENRICHMENT_TSV)
    return path


@pytest.fixture
def reactome_file(tmp_path):
    path = tmp_path / "reactome.tsv"
    path.write_text(REACTOME_TSV)
    return path


@pytest.fixture
def mapping_file(tmp_path):
    """Pathway -> member genes mapping table."""
    path = tmp_path / "mapping.tsv"
    path.write_text(MAPPING_TSV)
    return path


@pytest.fixture
def scenario_records():
    """Four pathways: A={1,2,3}, B={2,3,4}, C={10,11}, D={10,11,12}."""
    return pl.DataFrame(
        {
            'database': ['GOBP'] * 4,
            'pathway_id': ['A', 'B', 'C', 'D'],
            'name': ['A', 'B', 'C', 'D'],
            'description': ['', '', '', ''],
            'genes_in_pathway': [30, 40, 20, 50],
            'genes_in_overlap': [3, 3, 2, 3],
            'ratio': [0.1, 0.075, 0.1, 0.06],
            'p_value': [1e-5, 1e-4, 1e-6, 1e-3],
            'q_value': [1e-3, 5e-3, 1e-4, 2e-2],
            'accession': ['M1', 'M2', 'M3', 'M4'],
            'gene_symbols': [['G1', 'G2', 'G3'], ['G2', 'G3', 'G4'], ['G10', 'G11'], ['G10', 'G11', 'G12']],
            'gene_ids': [['1', '2', '3'], ['2', '3', '4'], ['10', '11'], ['10', '11', '12']],
        },
        schema=RECORD_SCHEMA,
    )
