import sys

from weasel_repl.main import main

sys.exit(main())
