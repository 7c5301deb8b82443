from pathlib import Path
import logging
import sys

sys.path.insert(0, str(Path(__file__).parent))

import uvicorn

from config.settings import API_HOST, API_PORT, LOG_LEVEL


def main():
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    uvicorn.run(
        "api.main:app",
        host=API_HOST,
        port=API_PORT,
        log_level=LOG_LEVEL.lower(),
        reload=False
    )


if __name__ == "__main__":
    main()
