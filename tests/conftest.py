from dataclasses import fields

import pytest

from eventrelay.streaming import QueueConfig
from tests.helpers import FIXED_NOW, make_event


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch, tmp_path):
    """
    Keep the developer's environment and config file out of the tests.
    """
    for f in fields(QueueConfig):
        monkeypatch.delenv(f"EVENTRELAY_{f.name.upper()}", raising=False)

    monkeypatch.setattr(
        "eventrelay.constants.CONFIG_FILE_USER", tmp_path / "missing-config.ini"
    )


@pytest.fixture
def event_factory():
    return make_event


@pytest.fixture
def clock():
    return lambda: FIXED_NOW
