import logging
import os
import pathlib
import sys
import pytest


# Ensure repo root is on PYTHONPATH for direct package imports (e.g. `import voidledger`).
_REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from voidledger.access import Keypair  # noqa: E402
from voidledger.addressing import Address  # noqa: E402
from voidledger.config import ConfigManager  # noqa: E402
from voidledger.engine import LedgerEngine  # noqa: E402
from voidledger.store import RecordStore  # noqa: E402


FIXED_TIME = 1_700_000_000


def _env_flag(name: str) -> bool:
    v = (os.environ.get(name) or '').strip().lower()
    return v in {'1', 'true', 'yes', 'y', 'on'}


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "slow: slow correctness tests (skipped unless VOIDLEDGER_RUN_SLOW=1)",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list) -> None:
    run_slow = _env_flag('VOIDLEDGER_RUN_SLOW')

    for item in items:
        if 'slow' in item.keywords and not run_slow:
            item.add_marker(pytest.mark.skip(reason='slow tests skipped; set VOIDLEDGER_RUN_SLOW=1 to enable'))


@pytest.fixture(autouse=True)
def fresh_config(monkeypatch):
    """Every test starts from default configuration with no VOIDLEDGER_* overrides."""
    for name in list(os.environ):
        if name.startswith("VOIDLEDGER_"):
            monkeypatch.delenv(name, raising=False)
    ConfigManager.reset()
    yield
    ConfigManager.reset()
    root = logging.getLogger("voidledger")
    for handler in list(root.handlers):
        if getattr(handler, "_voidledger", False):
            root.removeHandler(handler)


@pytest.fixture
def store():
    return RecordStore(lock_timeout_seconds=1.0)


@pytest.fixture
def clock():
    return lambda: FIXED_TIME


@pytest.fixture
def engine(store, clock):
    return LedgerEngine(store=store, clock=clock)


def _identity(n: int) -> Address:
    return Keypair.from_seed(bytes([n]) * 32).address


@pytest.fixture
def alice() -> Address:
    return _identity(1)


@pytest.fixture
def bob() -> Address:
    return _identity(2)


@pytest.fixture
def carol() -> Address:
    return _identity(3)


@pytest.fixture
def encryption_key() -> bytes:
    # Uncompressed secp256k1-style public key: 0x04 prefix + 64 bytes.
    return b"\x04" + bytes(range(64))


@pytest.fixture
def keypair_file(tmp_path):
    path = tmp_path / "id.json"
    Keypair.from_seed(bytes([7]) * 32).to_file(path)
    return path
