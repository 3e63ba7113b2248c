import pytest

from imap_webmail.config import EmailServer, Settings


@pytest.fixture
def settings():
    return Settings(
        imap=EmailServer(host="imap.example.com", port=993, use_ssl=True),
        smtp=EmailServer(host="smtp.example.com", port=465, use_ssl=True),
        _env_file=None,
    )
