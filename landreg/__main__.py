"""Land registry CLI entry point: python -m landreg"""

from __future__ import annotations

import sys

from landreg.cli import main

if __name__ == "__main__":
    sys.exit(main())
