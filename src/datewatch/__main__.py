import sys

from datewatch.cli import main

sys.exit(main())
