import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parent.parent
SRC_DIR = PROJECT_ROOT / "src"
if SRC_DIR.exists():
    sys.path.insert(0, str(SRC_DIR))

from filecabinet.crypto.kdf import ARGON_MEM_MIN_KIB, Argon2Params  # noqa: E402

# Smallest accepted Argon2 cost keeps the suite fast.
FAST_PARAMS = Argon2Params(mem_cost_kib=ARGON_MEM_MIN_KIB, time_cost=1, parallelism=1)


@pytest.fixture
def fast_params() -> Argon2Params:
    return FAST_PARAMS


@pytest.fixture
def vault_path(tmp_path: Path) -> Path:
    return tmp_path / "v.cab"
