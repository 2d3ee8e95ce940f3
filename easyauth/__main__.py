"""Allow ``python -m easyauth``."""

import sys

from .cli import main


sys.exit(main())
