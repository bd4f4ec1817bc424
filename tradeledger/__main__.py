import sys

from tradeledger.cli import main

sys.exit(main())
