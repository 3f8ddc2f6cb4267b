"""
Allow running the package with: python -m photocache

Examples:
    python -m photocache stats                # Cache statistics
    python -m photocache lookup photo.jpg     # Look up a photo
    python -m photocache config --init        # Create example config file
"""

import sys


def main():
    from .cli import main as cli_main
    sys.exit(cli_main())


if __name__ == '__main__':
    main()
