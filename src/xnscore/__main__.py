import sys

from xnscore.cli import main

sys.exit(main())
