"""Run the blobgit smart HTTP server with ``python -m blobgit``."""

import sys

from .aiohttp.server import main

if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
