"""receipt-api: run the API under uvicorn."""
import argparse

import uvicorn

from receipt_api.core.config import Settings


def main(argv=None):
    settings = Settings()
    parser = argparse.ArgumentParser(description="Run the receipt ingestion API")
    parser.add_argument("--host", default=settings.HOST)
    parser.add_argument("--port", type=int, default=settings.PORT)
    parser.add_argument("--reload", action="store_true", help="Auto-reload on code changes (development)")
    args = parser.parse_args(argv)

    uvicorn.run(
        "receipt_api.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
