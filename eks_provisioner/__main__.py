"""Allow ``python -m eks_provisioner``."""

import sys

from eks_provisioner.cli import main

sys.exit(main())
