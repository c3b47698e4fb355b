import sys

from usage_commit.cli import main

sys.exit(main())
