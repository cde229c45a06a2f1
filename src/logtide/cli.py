import sys

import uvicorn

from logtide.config import Settings, setup_logging
from logtide.errors import ConfigurationError


def main():
    try:
        settings = Settings.from_env()
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(2)

    setup_logging(settings.log_level)
    uvicorn.run(
        "logtide.app:app",
        host=settings.host,
        port=settings.port,
        reload=settings.reload,
        log_level=settings.log_level,
    )


if __name__ == "__main__":
    main()
