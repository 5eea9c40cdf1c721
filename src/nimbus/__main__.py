"""Entry point for ``python -m nimbus``.

Usage:
    python -m nimbus serve --port 3001
    python -m nimbus chat --session scratch
"""

import sys

from nimbus.cli import main

if __name__ == "__main__":
    sys.exit(main())
