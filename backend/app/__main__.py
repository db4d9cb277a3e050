"""Run the signaling server: ``python -m app``."""

import uvicorn

from app.main import app, settings


def main() -> None:
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
