"""Run the service with ``python -m roomspots``."""

import os

import uvicorn

if __name__ == "__main__":
    port = int(os.environ.get("PORT", "8000"))
    # Bind only to localhost by default. Use a reverse proxy to expose externally.
    uvicorn.run("roomspots.main:app", host="127.0.0.1", port=port)
