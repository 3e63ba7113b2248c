import importlib
import sys
from unittest.mock import patch

from imap_webmail import log
from imap_webmail.config import Settings


def test_sink_level_comes_from_settings():
    settings = Settings(_env_file=None, log_level="debug")

    with (
        patch("imap_webmail.config.get_settings", return_value=settings),
        patch.object(log.logger, "remove") as remove,
        patch.object(log.logger, "add") as add,
    ):
        importlib.reload(log)

    remove.assert_called_once_with()
    add.assert_called_once_with(sys.stderr, level="DEBUG")
