import sys

from dapp_orchestrator.cli import main

sys.exit(main())
