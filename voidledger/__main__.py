import sys

from voidledger.cli import main

sys.exit(main())
