import sys

from .retention_cli import main

sys.exit(main())
