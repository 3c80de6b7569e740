"""Entry point for `python -m orchestream`."""

import sys

from orchestream.cli import main

sys.exit(main())
