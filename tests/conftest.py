from datetime import datetime, timedelta

import pytest

from services.console import PresetConsole
from services.techsupport_mock import TechSupportBackendMock

NOW = datetime(2026, 3, 2, 9, 0)
TOMORROW_10 = datetime(2026, 3, 3, 10, 0)
ONE_HOUR = timedelta(hours=1)


class ScriptedConsole(PresetConsole):
    """Preset console that records prompt keys and can run a hook before answering."""

    def __init__(self, answers=None, confirmations=None, acknowledged=True, hooks=None):
        super().__init__(answers, confirmations, acknowledged)
        self.hooks = dict(hooks or {})
        self.prompts = []

    def confirm(self, prompt: str, key: str) -> bool:
        self.prompts.append(key)
        hook = self.hooks.pop(key, None)
        if hook is not None:
            hook()
        return super().confirm(prompt, key)

    def acknowledge(self, prompt: str, key: str) -> bool:
        self.prompts.append(key)
        return super().acknowledge(prompt, key)


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def backend(clock) -> TechSupportBackendMock:
    return TechSupportBackendMock(clock=clock)


@pytest.fixture
def make_console():
    return ScriptedConsole
