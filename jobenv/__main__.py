import sys

from jobenv.cli import main

sys.exit(main())
