"""aiohttp front end for the blobgit smart HTTP server."""
