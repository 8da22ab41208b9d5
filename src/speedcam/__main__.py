import sys

from .inference.pipeline import main

sys.exit(main())
