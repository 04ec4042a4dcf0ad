# queue_server/app/main.py
import logging

import uvicorn

from .config import settings
from .db import init_db
from .scheduler import start_recalc_loop


def main():
    logging.basicConfig(level=settings.log_level.upper(),
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    init_db()
    start_recalc_loop()
    uvicorn.run("queue_server.app.api:app", host=settings.host, port=settings.port,
                log_level=settings.log_level)


if __name__ == '__main__':
    main()
