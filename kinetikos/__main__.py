import sys

from kinetikos.run import main

sys.exit(main())
