"""
Command-line interface for inspecting and maintaining a photocache database.

Examples:
    photocache stats
    photocache hash photo.jpg
    photocache compare a.jpg b.heic
    photocache store photo.jpg result.json
    photocache lookup photo.jpg --threshold 0.8
    photocache cleanup --vacuum
    photocache config --init
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from . import __version__
from .hashing import ImageHasher
from .imaging import load_image, is_degenerate
from .models import RecognitionResult
from .similarity import SimilarityMatcher, SimilarityWeights
from .user_config import UserConfig


def setup_logging(verbose: bool = False) -> logging.Logger:
    """
    Configure logging for the CLI.

    Args:
        verbose: Enable verbose (DEBUG level) logging

    Returns:
        Configured logger instance
    """
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(levelname)s - %(message)s',
        datefmt='%H:%M:%S'
    )
    return logging.getLogger(__name__)


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser with one subcommand per operation."""
    parser = argparse.ArgumentParser(
        prog='photocache',
        description='Inspect and maintain a similarity-aware recognition cache',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s stats
      Show cache usage and database size

  %(prog)s store photo.jpg result.json
      Cache a recognition result (JSON) for a photo

  %(prog)s lookup photo.jpg --threshold 0.8
      Find a cached result for a photo or a similar one

  %(prog)s compare a.jpg b.jpg
      Print the similarity score of two images

  %(prog)s cleanup --vacuum
      Remove expired entries and compact the database
        """
    )
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    parser.add_argument('--db', type=Path, default=None, help='Cache database file (default from config)')
    parser.add_argument('--config-dir', type=Path, default=None, help='Directory holding config.json')
    parser.add_argument('-v', '--verbose', action='store_true', help='Verbose output')

    subparsers = parser.add_subparsers(dest='command', metavar='COMMAND')
    subparsers.required = True

    p = subparsers.add_parser('hash', help='Print the content and perceptual hash of an image')
    p.add_argument('image', type=Path)

    p = subparsers.add_parser('compare', help='Print the similarity of two images')
    p.add_argument('image_a', type=Path)
    p.add_argument('image_b', type=Path)

    p = subparsers.add_parser('store', help='Cache a recognition result for an image')
    p.add_argument('image', type=Path)
    p.add_argument('result', type=Path, help='JSON file with the recognition result')

    p = subparsers.add_parser('lookup', help='Look up the cached result for an image')
    p.add_argument('image', type=Path)
    p.add_argument('-t', '--threshold', type=float, default=None, help='Minimum similarity (0-1)')

    p = subparsers.add_parser('similar', help='List cached entries similar to an image')
    p.add_argument('image', type=Path)
    p.add_argument('-t', '--threshold', type=float, default=None, help='Minimum similarity (0-1)')
    p.add_argument('-n', '--limit', type=int, default=10, help='Maximum matches to show')

    subparsers.add_parser('stats', help='Show cache statistics')

    p = subparsers.add_parser('cleanup', help='Remove expired entries')
    p.add_argument('--vacuum', action='store_true', help='Compact the database afterwards')

    p = subparsers.add_parser('invalidate', help='Remove the entry with a content hash')
    p.add_argument('content_hash')

    subparsers.add_parser(
        'optimize',
        help='Remove expired entries, compact the database and report LSH bucket statistics '
             '(buckets live in memory and are rebuilt by each process)',
    )

    p = subparsers.add_parser('clear', help='Remove every cached entry')
    p.add_argument('-y', '--yes', action='store_true', help='Do not ask for confirmation')

    p = subparsers.add_parser('config', help='Show or create the user config file')
    p.add_argument('-i', '--init', action='store_true', help='Create an example config file')

    return parser


def _print_result(result: RecognitionResult) -> None:
    item = result.primary_result
    print(f"  Item:       {item.name} ({item.category})")
    print(f"  Confidence: {result.confidence:.2f}")
    if result.similarity_score is not None:
        print(f"  Match:      similar ({result.similarity_score:.3f})")
    else:
        print(f"  Match:      exact")
    if result.alternative_results:
        names = ', '.join(alt.name for alt in result.alternative_results)
        print(f"  Alternates: {names}")


def _cmd_hash(args, config: UserConfig) -> int:
    img = load_image(args.image)
    if is_degenerate(img):
        print(f"✗ Cannot read image: {args.image}")
        return 1
    fingerprint = ImageHasher().fingerprint(img)
    print(f"Content hash:    {fingerprint.content_hash}")
    print(f"Perceptual hash: {fingerprint.perceptual_hash}")
    if not fingerprint.is_informative:
        print("Note: flat image, perceptual hash carries no structure")
    return 0


def _cmd_compare(args, config: UserConfig) -> int:
    with SimilarityMatcher(weights=SimilarityWeights.from_dict(config.weights)) as matcher:
        score = matcher.similarity(args.image_a, args.image_b)
        identical = matcher.hasher.identical(args.image_a, args.image_b)
    print(f"Similarity: {score:.4f}")
    print(f"Identical:  {'yes' if identical else 'no'}")
    return 0


def _cmd_store(args, manager) -> int:
    try:
        with open(args.result, 'r', encoding='utf-8') as f:
            result = RecognitionResult.from_dict(json.load(f))
    except (OSError, ValueError, KeyError) as e:
        print(f"✗ Invalid result file {args.result}: {e}")
        return 1

    if manager.cache_result(args.image, result):
        print(f"✓ Cached '{result.primary_result.name}' for {args.image}")
        return 0
    print(f"✗ Could not cache result for {args.image}")
    return 1


def _cmd_lookup(args, manager) -> int:
    if args.threshold is not None:
        manager.similarity_threshold = args.threshold
    result = manager.get_cached_result(args.image)
    if result is None:
        print(f"✗ No cached result for {args.image}")
        return 1
    print(f"✓ Cached result for {args.image}")
    _print_result(result)
    return 0


def _cmd_similar(args, manager) -> int:
    matches = manager.find_similar_cached_results(args.image, args.threshold)
    if not matches:
        print("No similar cached entries.")
        return 0
    print(f"{len(matches)} similar cached entr{'y' if len(matches) == 1 else 'ies'}:")
    for candidate in matches[:args.limit]:
        info = candidate.to_dict()
        print(f"  {info['similarity']:.3f}  {info['content_hash'][:16]}  {info['name']}")
    return 0


def _cmd_stats(args, manager) -> int:
    storage = manager.storage_statistics()
    usage = manager.statistics()
    print(f"Database:          {storage.db_path}")
    print(f"Entries:           {storage.entry_count:,}")
    print(f"Indexed (live):    {usage.memory_entries:,}")
    print(f"Stored size:       {storage.total_size_formatted}")
    print(f"Compression ratio: {storage.compression_ratio:.2f}")
    return 0


def _cmd_cleanup(args, manager) -> int:
    removed = manager.cleanup_expired_cache()
    print(f"✓ Removed {removed:,} expired entr{'y' if removed == 1 else 'ies'}")
    if args.vacuum:
        manager.storage.vacuum()
        print("✓ Database compacted")
    return 0


def _cmd_invalidate(args, manager) -> int:
    if manager.invalidate_cache(args.content_hash):
        print(f"✓ Removed {args.content_hash}")
        return 0
    print(f"✗ No entry with content hash {args.content_hash}")
    return 1


def _cmd_optimize(args, manager) -> int:
    removed = manager.cleanup_expired_cache()
    manager.storage.vacuum()
    print(f"✓ Removed {removed:,} expired entr{'y' if removed == 1 else 'ies'} and compacted the database")
    stats = manager.optimize_similarity_index()
    print(f"✓ Indexed {stats['entries']:,} entries in {stats['num_tables']} tables "
          f"({stats['non_empty_buckets']:,} buckets)")
    return 0


def _cmd_clear(args, manager) -> int:
    if not args.yes:
        answer = input("Remove every cached entry? [y/N] ").strip().lower()
        if answer not in ('y', 'yes'):
            print("Aborted.")
            return 1
    manager.clear_all_cache()
    print("✓ Cache cleared")
    return 0


def _cmd_config(args, config: UserConfig) -> int:
    if args.init:
        if config.create_example_config():
            print(f"✓ Created example configuration file at:")
            print(f"  {config.config_file_path}")
            return 0
        print(f"✗ Failed to create configuration file.")
        return 1

    print(f"Configuration file: {config.config_file_path}")
    if config.config_file_path.exists():
        print(f"Status: ✓ Found")
    else:
        print(f"Status: ✗ Not found (using defaults)")
        print(f"\nRun 'photocache config --init' to create one.")

    print(f"\nCurrent settings:")
    for key, value in config.as_dict().items():
        print(f"  {key}: {value}")
    return 0


# Commands that only need the configuration
_STANDALONE = {
    'hash': _cmd_hash,
    'compare': _cmd_compare,
    'config': _cmd_config,
}

# Commands that operate on the cache database
_CACHE_COMMANDS = {
    'store': _cmd_store,
    'lookup': _cmd_lookup,
    'similar': _cmd_similar,
    'stats': _cmd_stats,
    'cleanup': _cmd_cleanup,
    'invalidate': _cmd_invalidate,
    'optimize': _cmd_optimize,
    'clear': _cmd_clear,
}


def main(argv: Optional[list[str]] = None) -> int:
    """
    Main entry point for the CLI.

    Returns:
        Exit code (0 for success, 1 for error)
    """
    parser = create_parser()
    args = parser.parse_args(argv)
    logger = setup_logging(args.verbose)
    config = UserConfig(config_dir=args.config_dir)

    try:
        if args.command in _STANDALONE:
            return _STANDALONE[args.command](args, config)

        manager = config.build_manager(db_path=str(args.db) if args.db else None)
        with manager:
            return _CACHE_COMMANDS[args.command](args, manager)
    except KeyboardInterrupt:
        print("\nInterrupted.")
        return 130
    except Exception as e:
        logger.error(f"{args.command} failed: {e}")
        if args.verbose:
            raise
        return 1


if __name__ == '__main__':
    sys.exit(main())
