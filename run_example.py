import logging
import os
from pathlib import Path

from pathclust import PathwayClusteringPipeline
from pathclust.utils import setup_logging

def run_pipeline():
    # Debug messages go to the log file, INFO and above to the console
    setup_logging(Path("results/logs"), level=logging.INFO)

    print(f"Current working directory: {os.getcwd()}")
    config_path = Path("example/config.toml").absolute()
    print(f"Using config file: {config_path}")

    if not config_path.is_file():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    try:
        pipeline = PathwayClusteringPipeline(str(config_path))

        print("Input files configuration:")
        for database, path in pipeline.config.enrichment_files.items():
            print(f"  - {database}: {path}")
        print(f"  - mapping: {pipeline.config.mapping_file}")

        print("Running clustering...")
        pipeline.run()

        workbook = pipeline.config.annotated_workbook
        if workbook is not None and workbook.is_file():
            print(f"Summarising annotated workbook {workbook}...")
            pipeline.summarise()
        else:
            print(f"Annotate {pipeline.config.get_output_path('annotation') / 'pathway_clusters.xlsx'} "
                  f"and save it as {workbook} to summarise the clusters.")
        print("Pipeline execution completed successfully!")
    except Exception:
        logging.exception("Error running the pipeline")
        raise

if __name__ == "__main__":
    run_pipeline()
