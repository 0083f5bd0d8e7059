import sys
import argparse
import logging
from pathlib import Path

from config import SystemConfig
from cli import main_cli
from utils.logging_config import setup_logging


def initialize_directories(config: SystemConfig):
    """Create necessary directories"""
    Path(config.log_dir).mkdir(parents=True, exist_ok=True)
    Path(config.corpus_path).parent.mkdir(parents=True, exist_ok=True)


def main(argv=None) -> int:
    """Main application entry point"""
    argv = sys.argv[1:] if argv is None else argv

    # Pick up --config before the CLI parses the rest
    pre_parser = argparse.ArgumentParser(add_help=False)
    pre_parser.add_argument('-c', '--config', default='config.yaml')
    known, _ = pre_parser.parse_known_args(argv)

    # Load configuration
    config = SystemConfig.load(known.config)

    # Setup logging
    initialize_directories(config)
    setup_logging(config.log_level, config.log_dir)
    logger = logging.getLogger(__name__)
    logger.info("Starting image duplicate detection")

    return main_cli(argv, config)


if __name__ == "__main__":
    sys.exit(main())
