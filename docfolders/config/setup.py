from typing import Optional

from cachetools import cached
from dotenv import find_dotenv, load_dotenv

from docfolders.config.logger import get_logger, logging_setup
from docfolders.config.settings import apply_env_overrides


@cached(cache={})
def setup():
    """
    One-time setup of environment config and logging. Idempotent.
    """

    env_setup()

    logging_setup()


def env_setup() -> Optional[str]:
    """
    Load a `.env` file if there is one and apply any `DOCFOLDERS_*` overrides.
    """
    dotenv_path = find_dotenv(usecwd=True)
    if dotenv_path:
        load_dotenv(dotenv_path)

    changed = apply_env_overrides()
    if changed:
        log = get_logger(__name__)
        log.info("Settings from environment: %s", ", ".join(changed))

    return dotenv_path or None
