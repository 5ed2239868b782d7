#!/usr/bin/env python3
"""Run route53-update from a source checkout.

Installed copies get the ``route53-update`` console script instead. This runner
is for EC2 user-data scripts and container entrypoints that clone the
repository and call it in place:

    ./route53-update.py --record-name app.example.com --value-from auto --wait
"""

import sys
from pathlib import Path

SRC_DIR = Path(__file__).resolve().parent / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from route53_update.cli import main  # noqa: E402

if __name__ == "__main__":
    main(sys.argv[1:])
