#!/usr/bin/env python3
"""
Command line interface for the pathway clustering pipeline.
"""

import argparse
import logging
import sys
from pathlib import Path

import tomli
from tomli_w import dump

from .config import LINKAGE_METHODS
from .pipeline import PathwayClusteringPipeline
from .utils import setup_logging


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="pathclust",
        description="Cluster enriched pathways by shared genes and summarise annotated clusters"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    cluster_parser = subparsers.add_parser(
        "cluster",
        help="Cluster pathways and export the annotation workbook"
    )
    summarise_parser = subparsers.add_parser(
        "summarise",
        help="Summarise clusters from the finalised annotation workbook"
    )

    for sub in (cluster_parser, summarise_parser):
        sub.add_argument(
            "config_file",
            type=str,
            help="Path to TOML configuration file"
        )
        sub.add_argument(
            "--output-dir",
            type=str,
            help="Override output directory"
        )
        sub.add_argument(
            "--no-plots",
            action="store_true",
            help="Do not write plots"
        )
        sub.add_argument(
            "--verbose",
            action="store_true",
            help="Log debug messages"
        )

    analysis_group = cluster_parser.add_argument_group("Analysis parameter overrides")
    analysis_group.add_argument(
        "--nclust",
        type=int,
        help="Override number of clusters per database"
    )
    analysis_group.add_argument(
        "--linkage-method",
        choices=sorted(LINKAGE_METHODS),
        help="Override hierarchical clustering linkage method"
    )

    summarise_parser.add_argument(
        "--annotated-workbook",
        type=str,
        help="Override path of the finalised annotation workbook"
    )

    return parser.parse_args(argv)


def update_config(config: dict, args: argparse.Namespace) -> dict:
    """Update configuration with command line overrides."""
    config.setdefault('input', {})
    config.setdefault('output', {})
    config.setdefault('analysis', {})

    if args.output_dir:
        config['output']['directory'] = args.output_dir
    if args.no_plots:
        config['output']['plots'] = False

    if getattr(args, 'nclust', None) is not None:
        config['analysis']['nclust'] = args.nclust
    if getattr(args, 'linkage_method', None):
        config['analysis']['linkage_method'] = args.linkage_method
    if getattr(args, 'annotated_workbook', None):
        config['input']['annotated_workbook'] = args.annotated_workbook

    return config


def main(argv=None):
    """Main entry point for the CLI."""
    args = parse_args(argv)

    try:
        with open(args.config_file, 'rb') as f:
            config = tomli.load(f)
    except Exception as e:
        print(f"Error loading configuration file: {str(e)}")
        sys.exit(1)

    config = update_config(config, args)

    # Set up logging first, before any pipeline operations
    output_dir = Path(config['output'].get('directory', 'results'))
    setup_logging(output_dir / 'logs', level=logging.DEBUG if args.verbose else logging.INFO)

    logging.info(f"Starting pathway clustering pipeline ({args.command})")
    logging.info(f"Using configuration file: {args.config_file}")

    # Overrides are applied through a temporary copy of the configuration
    temp_config_path = Path(args.config_file).parent / f".{Path(args.config_file).stem}.effective.toml"
    with open(temp_config_path, 'wb') as f:
        dump(config, f)

    try:
        pipeline = PathwayClusteringPipeline(str(temp_config_path))
        if args.command == 'cluster':
            pipeline.run()
        else:
            pipeline.summarise()
        logging.info("Pipeline execution completed successfully")
    except Exception as e:
        logging.error(f"Pipeline execution failed: {str(e)}")
        sys.exit(1)
    finally:
        temp_config_path.unlink()


if __name__ == "__main__":
    main()
