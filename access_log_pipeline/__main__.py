import sys

from access_log_pipeline.driver import main

sys.exit(main())
