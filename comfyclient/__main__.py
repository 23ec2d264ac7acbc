import sys

from comfyclient.cli import main

sys.exit(main())
