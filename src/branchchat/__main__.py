import sys

from branchchat.cli import main

sys.exit(main())
