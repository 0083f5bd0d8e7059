# cli.py

import argparse
import json
import logging
import sys
import time
from pathlib import Path

from tqdm import tqdm

from config import SystemConfig
from core.corpus import CorpusEntry, load_corpus, save_corpus
from core.duplicate_matcher import DuplicateMatcher
from core.errors import DuplicateDetectionError, DecodeError
from core.fingerprint import FingerprintExtractor
from core.url_normalizer import URLNormalizer
from utils.file_utils import get_image_files, format_file_size
from utils.logging_config import PerformanceLogger, log_operation
from utils.report_generator import DuplicateReportGenerator

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_DUPLICATE = 1
EXIT_ERROR = 2


def fingerprint_command(args, config: SystemConfig) -> int:
    """Print or save the fingerprint of one image"""
    extractor = FingerprintExtractor(config.extraction)
    fingerprint = extractor.extract_file(args.image, args.source_url, args.page_url)

    output = json.dumps(fingerprint.to_dict(), indent=2)
    if args.output:
        Path(args.output).write_text(output)
        print(f"Fingerprint saved to: {args.output}")
    else:
        print(output)

    return EXIT_OK


def index_command(args, config: SystemConfig) -> int:
    """Fingerprint every image in a directory into a corpus file"""
    image_paths = get_image_files(args.directory, recursive=not args.no_recursive)
    print(f"Found {len(image_paths)} images in {args.directory}")

    extractor = FingerprintExtractor(config.extraction)
    perf = PerformanceLogger()
    entries = []
    total_bytes = 0

    for path in tqdm(image_paths, desc="Fingerprinting"):
        start = time.time()
        try:
            fingerprint = extractor.extract_file(path)
        except DecodeError as e:
            logger.warning(f"Skipping {path}: {e}")
            continue
        perf.log_metric('extract', time.time() - start, path=path)

        total_bytes += fingerprint.byte_size
        entries.append(CorpusEntry(id=path, fingerprint=fingerprint))

    output = args.output or config.corpus_path
    save_corpus(output, entries)

    log_operation(logger, 'index', directory=args.directory, indexed=len(entries),
                  skipped=len(image_paths) - len(entries), corpus=output)
    if args.metrics:
        perf.save_metrics(args.metrics)

    stats = perf.get_statistics('extract')
    print(f"Indexed {len(entries)} images ({format_file_size(total_bytes)}) into {output}")
    if stats:
        print(f"Mean extraction time: {stats['mean'] * 1000:.1f} ms")

    return EXIT_OK


def check_command(args, config: SystemConfig) -> int:
    """Check one image against a corpus file"""
    matching = config.matching
    if args.quorum is not None:
        matching.match_quorum = args.quorum
    if args.stop_at_first:
        matching.stop_at_first_match = True

    corpus = load_corpus(args.corpus or config.corpus_path)
    extractor = FingerprintExtractor(config.extraction)
    candidate = extractor.extract_file(args.image, args.source_url, args.page_url)

    matcher = DuplicateMatcher(matching, URLNormalizer(config.url_normalization))
    report = matcher.check(candidate, corpus, on_progress=logger.info)

    log_operation(logger, 'check', image=args.image, is_duplicate=report.is_duplicate,
                  counts={t.value: n for t, n in report.counts().items()},
                  elapsed_seconds=round(report.elapsed_seconds, 3))

    generator = DuplicateReportGenerator()
    print(generator.summary_text(report))

    if args.json:
        generator.save_json(report, args.json)
        print(f"\nJSON report saved to: {args.json}")
    if args.report:
        generator.generate_report(report, args.report)
        print(f"Report saved to: {args.report}")

    return EXIT_DUPLICATE if report.is_duplicate else EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Image archive duplicate detection - Command Line Interface"
    )
    parser.add_argument('-c', '--config', default='config.yaml',
                        help='Path to YAML configuration file')
    subparsers = parser.add_subparsers(dest='command', help='Commands')

    # Fingerprint command
    fp_parser = subparsers.add_parser('fingerprint', help='Compute the fingerprint of an image')
    fp_parser.add_argument('image', help='Path to image')
    fp_parser.add_argument('--source-url', default='', help='URL the image was fetched from')
    fp_parser.add_argument('--page-url', default='', help='URL of the page showing the image')
    fp_parser.add_argument('-o', '--output', help='Output JSON file')
    fp_parser.set_defaults(func=fingerprint_command)

    # Index command
    index_parser = subparsers.add_parser('index', help='Build a corpus file from a directory')
    index_parser.add_argument('directory', help='Directory containing images')
    index_parser.add_argument('-o', '--output', help='Corpus JSON file to write')
    index_parser.add_argument('--no-recursive', action='store_true',
                              help='Do not descend into subdirectories')
    index_parser.add_argument('--metrics', help='Save per-image timing metrics to a JSON file')
    index_parser.set_defaults(func=index_command)

    # Check command
    check_parser = subparsers.add_parser('check', help='Check an image for duplicates')
    check_parser.add_argument('image', help='Path to candidate image')
    check_parser.add_argument('--corpus', help='Corpus JSON file')
    check_parser.add_argument('--source-url', default='', help='URL the image was fetched from')
    check_parser.add_argument('--page-url', default='', help='URL of the page showing the image')
    check_parser.add_argument('-q', '--quorum', type=int, choices=[1, 2, 3],
                              help='Perceptual hashes that must agree for a visual match')
    check_parser.add_argument('--stop-at-first', action='store_true',
                              help='Stop at the first match instead of collecting all')
    check_parser.add_argument('-r', '--report', help='Output HTML report path')
    check_parser.add_argument('--json', help='Output JSON report path')
    check_parser.set_defaults(func=check_command)

    return parser


def main_cli(argv=None, config: SystemConfig = None) -> int:
    """Main CLI entry point"""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return EXIT_OK

    try:
        if config is None:
            config = SystemConfig.load(args.config)
        return args.func(args, config)
    except (DuplicateDetectionError, OSError) as e:
        logger.error(f"{args.command} failed: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main_cli())
