"""Run MartialBase server: python3 -m martialbase"""

import uvicorn

from martialbase.config import settings


def main() -> None:
    uvicorn.run("martialbase.api.app:app", host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
