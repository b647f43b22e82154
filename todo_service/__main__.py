"""Run the todo service with uvicorn."""

import uvicorn

from todo_service.config import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run("todo_service.main:app", host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
