"""Allow running as: python -m stproxy"""

import sys

from .main import main

sys.exit(main())
