"""Entry point: ``python -m graphflow.main`` serves the API with uvicorn."""

from .config import load_config
from .factory import create_app

config = load_config()
app = create_app(config)


def main() -> None:
    import uvicorn

    uvicorn.run("graphflow.main:app", **config.get_uvicorn_config())


if __name__ == "__main__":
    main()
