"""Key derivation helpers using Argon2id."""

from __future__ import annotations

import os
from dataclasses import dataclass

from argon2.low_level import Type, hash_secret_raw

from filecabinet.errors import CorruptContainer, ValidationError

DEFAULT_MEM_COST_KIB = 64 * 1024  # 64 MiB
DEFAULT_TIME_COST = 3
DEFAULT_PARALLELISM = 1
DERIVED_KEY_LEN = 32
SALT_LEN = 16

ARGON_MEM_MIN_KIB = 8 * 1024
ARGON_MEM_MAX_KIB = 2 * 1024 * 1024
ARGON_TIME_MIN = 1
ARGON_TIME_MAX = 10
ARGON_PARALLELISM_MIN = 1
ARGON_PARALLELISM_MAX = 8


@dataclass(frozen=True)
class Argon2Params:
    mem_cost_kib: int = DEFAULT_MEM_COST_KIB
    time_cost: int = DEFAULT_TIME_COST
    parallelism: int = DEFAULT_PARALLELISM


def new_salt() -> bytes:
    return os.urandom(SALT_LEN)


def derive_key(passphrase: str, salt: bytes, params: Argon2Params) -> bytes:
    """Derive a 256-bit key from a passphrase using Argon2id."""

    if len(salt) != SALT_LEN:
        raise ValueError(f"Salt must be {SALT_LEN} bytes long, got {len(salt)}")

    return hash_secret_raw(
        secret=passphrase.encode("utf-8"),
        salt=salt,
        time_cost=params.time_cost,
        memory_cost=params.mem_cost_kib,
        parallelism=params.parallelism,
        hash_len=DERIVED_KEY_LEN,
        type=Type.ID,
        version=19,
    )


def recommended_params() -> Argon2Params:
    """Return recommended default Argon2id parameters."""

    return Argon2Params()


def validate_params(params: Argon2Params) -> Argon2Params:
    if not (ARGON_MEM_MIN_KIB <= params.mem_cost_kib <= ARGON_MEM_MAX_KIB):
        raise ValidationError(
            f"Argon2 memory must be between {ARGON_MEM_MIN_KIB} and {ARGON_MEM_MAX_KIB} KiB",
        )
    if not (ARGON_TIME_MIN <= params.time_cost <= ARGON_TIME_MAX):
        raise ValidationError(
            f"Argon2 time cost must be between {ARGON_TIME_MIN} and {ARGON_TIME_MAX}",
        )
    if not (ARGON_PARALLELISM_MIN <= params.parallelism <= ARGON_PARALLELISM_MAX):
        raise ValidationError(
            "Argon2 parallelism must be between "
            f"{ARGON_PARALLELISM_MIN} and {ARGON_PARALLELISM_MAX}",
        )
    return params


def validate_stored_params(params: Argon2Params) -> Argon2Params:
    try:
        return validate_params(params)
    except ValidationError as exc:
        raise CorruptContainer("Container has invalid Argon2 parameters") from exc


def resolve_argon_params(
    *,
    mem_kib: int | None = None,
    time_cost: int | None = None,
    parallelism: int | None = None,
    base: Argon2Params | None = None,
) -> Argon2Params:
    """Build validated Argon2 parameters using overrides when provided."""
    defaults = base or recommended_params()
    candidate = Argon2Params(
        mem_cost_kib=mem_kib if mem_kib is not None else defaults.mem_cost_kib,
        time_cost=time_cost if time_cost is not None else defaults.time_cost,
        parallelism=parallelism if parallelism is not None else defaults.parallelism,
    )
    return validate_params(candidate)
