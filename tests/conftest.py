import os
import pathlib
import sys
import pytest


# Ensure repo root is on PYTHONPATH for direct package imports (e.g. `import shieldpool`).
_REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from shieldpool.aegis.collaborators import AcceptingVerifier, InMemoryToken, ManualClock  # noqa: E402
from shieldpool.aegis.config import ConfigManager  # noqa: E402
from shieldpool.aegis.elgamal import pedersen_commit  # noqa: E402
from shieldpool.aegis.pool import DepositEntry, PrivacyPool  # noqa: E402
from shieldpool.hashing import compute_commitment, compute_nullifier  # noqa: E402


OWNER = "0x0ff1ce"
AUDITORS = ("0xa0d1", "0xa0d2", "0xa0d3")
ASP_OPERATOR = "0xa5b1"
ALICE = "0xa11ce"
BOB = "0xb0b"
CAROL = "0xca201"
ASSET = 0x5354524b  # 'STRK'
MIN_STAKE = 10000


def _env_flag(name: str) -> bool:
    v = (os.environ.get(name) or '').strip().lower()
    return v in {'1', 'true', 'yes', 'y', 'on'}


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "slow: slow correctness tests (skipped unless AEGIS_RUN_SLOW=1)",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    run_slow = _env_flag('AEGIS_RUN_SLOW')

    for item in items:
        if 'slow' in item.keywords and not run_slow:
            item.add_marker(pytest.mark.skip(reason='slow tests skipped; set AEGIS_RUN_SLOW=1 to enable'))


@pytest.fixture(autouse=True)
def fresh_config(tmp_path, monkeypatch):
    """Each test sees default configuration, away from any real config files."""
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.chdir(tmp_path)
    ConfigManager._instance = None
    yield
    ConfigManager._instance = None


@pytest.fixture
def clock():
    return ManualClock(start=1_700_000_000)


@pytest.fixture
def verifier():
    return AcceptingVerifier()


@pytest.fixture
def token():
    return InMemoryToken("STRK")


@pytest.fixture
def pool(clock, verifier, token):
    """Initialized pool with three auditors and one registered asset."""
    p = PrivacyPool()
    p.initialize(OWNER, OWNER, token, verifier, clock=clock, auditors=AUDITORS)
    p.register_asset(OWNER, ASSET, token)
    for account in (ALICE, BOB, CAROL, ASP_OPERATOR):
        token.mint(account, 1_000_000)
        token.approve(account, p.address, 1_000_000)
    return p


@pytest.fixture
def make_note():
    """Factory for deterministic notes: (entry, secret, nullifier_seed)."""
    def _make(seed: int, amount: int = 100, asset: int = ASSET):
        secret = 0x5ec0000 + seed
        nullifier_seed = 0x9e11000 + seed
        entry = DepositEntry(
            commitment=compute_commitment(secret, nullifier_seed, amount, asset),
            amount_commitment=pedersen_commit(amount, 0xb11d + seed),
            asset_id=asset,
            amount=amount,
        )
        return entry, secret, nullifier_seed
    return _make


@pytest.fixture
def nullifier_for():
    def _nullifier(nullifier_seed: int, leaf_index: int) -> int:
        return compute_nullifier(nullifier_seed, leaf_index)
    return _nullifier


@pytest.fixture
def active_asp(pool):
    """An ASP registered by ASP_OPERATOR and approved by two auditors."""
    from shieldpool.aegis.elgamal import generate_keypair

    keys = generate_keypair(0xa5b0001)
    asp_id = pool.register_asp(ASP_OPERATOR, keys.public_key, 0x1234, MIN_STAKE)
    pool.approve_asp(AUDITORS[0], asp_id)
    pool.approve_asp(AUDITORS[1], asp_id)
    return asp_id
