"""Root test configuration for promptrelay.

Clears every PROMPTRELAY_* environment variable for the entire test suite so
that a developer's shell (or a CI secret) cannot leak an origin, a credential
or a limit override into load_config().

Tests that exercise env overrides set the variables they need with their own
monkeypatch calls; those run after this fixture and win.
"""

import os
import pytest


@pytest.fixture(autouse=True)
def clear_promptrelay_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove PROMPTRELAY_* variables so every test starts from defaults."""
    for name in list(os.environ):
        if name.startswith("PROMPTRELAY_"):
            monkeypatch.delenv(name, raising=False)
