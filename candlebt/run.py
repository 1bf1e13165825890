"""
candlebt - API server entry point

Usage:
    python -m candlebt.run
"""

import uvicorn

from candlebt.config import API_HOST, API_PORT, DEBUG


def main():
    uvicorn.run(
        "candlebt.api.main:app",
        host=API_HOST,
        port=API_PORT,
        reload=DEBUG,
        log_level="debug" if DEBUG else "info"
    )


if __name__ == "__main__":
    main()
