"""Run the service with Uvicorn on ``$PORT``."""

import uvicorn

from .main import app


def main() -> None:
    uvicorn.run(app, host="0.0.0.0", port=app.state.config.port, log_level=app.state.config.log_level.lower())


if __name__ == "__main__":
    main()
