import sys

from peergrade.cli import main

sys.exit(main())
