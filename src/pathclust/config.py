"""Configuration handling for the pathway clustering pipeline."""

from pathlib import Path
from typing import Dict, List, Optional, Union

import tomli
import tomli_w

from .utils import ensure_dir

# Leading tokens MSigDB puts in front of standard gene set names
DEFAULT_STRIP_PREFIXES = [
    "GOBP", "GOCC", "GOMF", "GO", "REACTOME", "KEGG", "WP", "BIOCARTA", "PID", "HALLMARK",
]

LINKAGE_METHODS = {"average", "complete", "single", "weighted", "ward"}


class PipelineConfig:
    """Configuration class for the pathway clustering pipeline."""

    def __init__(self, config_path: Union[str, Path]):
        """Initialise the configuration from a TOML file.

        Args:
            config_path: Path to the TOML configuration file
        """
        self.config_path = Path(config_path)
        self.config = self._load_config()

    def _load_config(self) -> dict:
        """Load and validate the TOML configuration."""
        try:
            with open(self.config_path, "rb") as f:
                config = tomli.load(f)
        except FileNotFoundError:
            raise ValueError(f"Error loading configuration file: {self.config_path} does not exist")
        except Exception as e:
            raise ValueError(f"Error loading configuration file: {str(e)}")

        required_sections = ['input', 'output', 'analysis']
        missing_sections = [section for section in required_sections if section not in config]
        if missing_sections:
            raise ValueError(f"Missing required sections in configuration: {', '.join(missing_sections)}")

        required_inputs = ['enrichment_files', 'mapping_file']
        missing_inputs = [key for key in required_inputs if key not in config['input']]
        if missing_inputs:
            raise ValueError(f"Missing required input files in configuration: {', '.join(missing_inputs)}")

        enrichment_files = config['input']['enrichment_files']
        if not isinstance(enrichment_files, dict) or not enrichment_files:
            raise ValueError("Missing required input files in configuration: "
                             "enrichment_files must map database names to file paths")

        analysis = config['analysis']
        nclust = analysis.get('nclust', 15)
        if not isinstance(nclust, int) or isinstance(nclust, bool) or nclust < 1:
            raise ValueError(f"Invalid analysis.nclust: {nclust!r} (expected a positive integer)")

        method = analysis.get('linkage_method', 'average')
        if method not in LINKAGE_METHODS:
            raise ValueError(f"Invalid analysis.linkage_method: {method!r} "
                             f"(expected one of {', '.join(sorted(LINKAGE_METHODS))})")

        if analysis.get('recompute_statistics', False):
            missing = [key for key in ('query_size', 'universe_size') if key not in analysis]
            if missing:
                raise ValueError(f"Missing required analysis parameters for recompute_statistics: "
                                 f"{', '.join(missing)}")

        return config

    @property
    def input_files(self) -> Dict:
        """Get the input section."""
        return self.config['input']

    @property
    def enrichment_files(self) -> Dict[str, Path]:
        """Get enrichment result files keyed by database name, in configuration order."""
        return {db: Path(path) for db, path in self.input_files['enrichment_files'].items()}

    @property
    def databases(self) -> List[str]:
        """Get the database names in configuration order."""
        return list(self.input_files['enrichment_files'].keys())

    @property
    def mapping_file(self) -> Path:
        return Path(self.input_files['mapping_file'])

    @property
    def annotated_workbook(self) -> Optional[Path]:
        """Get the finalised (hand-annotated) workbook, if configured."""
        path = self.input_files.get('annotated_workbook')
        return Path(path) if path else None

    @property
    def separator(self) -> str:
        return self.input_files.get('separator', '\t')

    @property
    def enrichment_columns(self) -> Optional[Dict[str, str]]:
        """Get the header -> canonical column map for enrichment tables."""
        return self.config.get('columns', {}).get('enrichment')

    @property
    def mapping_columns(self) -> Optional[Dict[str, str]]:
        """Get the header -> canonical column map for the mapping table."""
        return self.config.get('columns', {}).get('mapping')

    @property
    def output_config(self) -> Dict:
        """Get output configuration."""
        return self.config.get('output', {})

    @property
    def analysis_params(self) -> Dict:
        """Get analysis parameters."""
        return self.config.get('analysis', {})

    @property
    def nclust(self) -> int:
        """Get the number of clusters to cut each dendrogram into."""
        return self.analysis_params.get('nclust', 15)

    @property
    def linkage_method(self) -> str:
        return self.analysis_params.get('linkage_method', 'average')

    @property
    def strip_prefixes(self) -> List[str]:
        """Get the database-prefix tokens removed from pathway display names."""
        return list(self.analysis_params.get('strip_prefixes', DEFAULT_STRIP_PREFIXES))

    @property
    def recompute_statistics(self) -> bool:
        return bool(self.analysis_params.get('recompute_statistics', False))

    @property
    def query_size(self) -> Optional[int]:
        return self.analysis_params.get('query_size')

    @property
    def universe_size(self) -> Optional[int]:
        return self.analysis_params.get('universe_size')

    @property
    def make_plots(self) -> bool:
        return bool(self.output_config.get('plots', True))

    def get_output_path(self, category: Optional[str] = None) -> Path:
        """Get the output directory or a subdirectory within it.

        Args:
            category: Optional subdirectory name within the output directory

        Returns:
            Path to the (created) directory
        """
        output_dir = Path(self.output_config.get('directory', 'results'))
        if category:
            return ensure_dir(output_dir / category)
        return ensure_dir(output_dir)

    def save_config(self, output_path: Optional[Union[str, Path]] = None) -> None:
        """Save the configuration to a TOML file.

        Args:
            output_path: Path to save the configuration. Defaults to the
                         original configuration file path.
        """
        if output_path is None:
            output_path = self.config_path

        with open(output_path, "wb") as f:
            tomli_w.dump(self.config, f)

    @classmethod
    def load_config(cls, config_path: Union[str, Path]) -> 'PipelineConfig':
        """Load configuration from a TOML file."""
        return cls(config_path)
