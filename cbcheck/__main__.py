import sys

from cbcheck.main import main


sys.exit(main())
