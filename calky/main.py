from __future__ import annotations

import logging
import os

import uvicorn


def main() -> None:
    logging.basicConfig(
        level=getattr(logging, os.getenv("CALKY_LOG_LEVEL", "INFO").upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    host = os.getenv("CALKY_HOST", "127.0.0.1")
    port = int(os.getenv("CALKY_PORT", "8080"))
    uvicorn.run("calky.web_api:create_app", factory=True, host=host, port=port, reload=False)


if __name__ == "__main__":
    main()
