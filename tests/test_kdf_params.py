import os

import pytest

from filecabinet.crypto.kdf import (
    ARGON_MEM_MAX_KIB,
    DERIVED_KEY_LEN,
    SALT_LEN,
    Argon2Params,
    derive_key,
    new_salt,
    recommended_params,
    resolve_argon_params,
    validate_stored_params,
)
from filecabinet.errors import CorruptContainer, ValidationError


def test_derive_key_is_deterministic(fast_params: Argon2Params) -> None:
    salt = os.urandom(SALT_LEN)
    first = derive_key("hunter2", salt, fast_params)
    second = derive_key("hunter2", salt, fast_params)
    assert first == second
    assert len(first) == DERIVED_KEY_LEN


def test_derive_key_depends_on_salt_and_passphrase(fast_params: Argon2Params) -> None:
    salt = new_salt()
    base = derive_key("hunter2", salt, fast_params)
    assert derive_key("hunter3", salt, fast_params) != base
    assert derive_key("hunter2", new_salt(), fast_params) != base


def test_derive_key_rejects_bad_salt(fast_params: Argon2Params) -> None:
    with pytest.raises(ValueError):
        derive_key("pw", b"short", fast_params)


def test_recommended_params_are_valid() -> None:
    params = recommended_params()
    assert resolve_argon_params() == params
    assert params.mem_cost_kib == 64 * 1024


def test_resolve_argon_params_applies_overrides() -> None:
    params = resolve_argon_params(mem_kib=16 * 1024, time_cost=2, parallelism=2)
    assert params == Argon2Params(mem_cost_kib=16 * 1024, time_cost=2, parallelism=2)


@pytest.mark.parametrize(
    "overrides",
    [
        {"mem_kib": 1024},
        {"mem_kib": ARGON_MEM_MAX_KIB + 1},
        {"time_cost": 0},
        {"time_cost": 11},
        {"parallelism": 0},
        {"parallelism": 9},
    ],
)
def test_resolve_argon_params_rejects_unsafe_values(overrides: dict) -> None:
    with pytest.raises(ValidationError):
        resolve_argon_params(**overrides)


def test_stored_params_out_of_range_are_corruption() -> None:
    with pytest.raises(CorruptContainer):
        validate_stored_params(Argon2Params(mem_cost_kib=1, time_cost=1, parallelism=1))
