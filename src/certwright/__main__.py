import sys

from certwright.cli import main

sys.exit(main())
