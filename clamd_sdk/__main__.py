import sys

from clamd_sdk.cli import main

sys.exit(main())
