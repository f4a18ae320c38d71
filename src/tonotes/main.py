"""Application entry point for the ToNotes auth backend."""

from tonotes.app import App
from tonotes.config import Config
from tonotes.core.core import Core
from tonotes.logging import setup_logging
from tonotes.web.runner import run_server


def main() -> None:
    config = Config()
    setup_logging(config.debug)
    app = App(Core.from_config(config))
    run_server(app, config)


if __name__ == "__main__":
    main()
