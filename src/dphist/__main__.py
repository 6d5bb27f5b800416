import sys

from dphist.cli import main

sys.exit(main())
