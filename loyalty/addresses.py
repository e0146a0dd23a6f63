"""Deterministic program-derived addresses.

The bump is searched from 255 downwards; the first bump for which solders
yields an off-curve address wins. Nothing here performs I/O.
"""

from typing import Optional, Sequence, Union

from solders.pubkey import Pubkey

from .errors import DerivationExhausted, InvalidArgument
from .models import AccountSeed, SeedTag

MAX_SEED_LEN = 32
MAX_SEEDS = 16


def to_pubkey(value: Union[str, Pubkey], name: str = "address") -> Pubkey:
    if isinstance(value, Pubkey):
        return value
    if not value:
        raise InvalidArgument(f"{name} is required")
    try:
        return Pubkey.from_string(value)
    except ValueError as exc:
        raise InvalidArgument(f"{name} is not a valid public key: {value}") from exc


def find_program_address(seeds: Sequence[bytes], program_id: Pubkey) -> tuple[Pubkey, int]:
    # the bump byte is appended as one more seed
    if len(seeds) >= MAX_SEEDS:
        raise InvalidArgument(f"At most {MAX_SEEDS - 1} seeds are allowed")
    for seed in seeds:
        if len(seed) > MAX_SEED_LEN:
            raise InvalidArgument(f"Seed exceeds {MAX_SEED_LEN} bytes")

    for bump in range(255, -1, -1):
        try:
            return Pubkey.create_program_address([*seeds, bytes([bump])], program_id), bump
        except Exception:  # noqa: BLE001  solders raises PubkeyError when the candidate is on the curve
            continue
    raise DerivationExhausted(f"No valid bump for seeds under program {program_id}")


def derive(tag: Union[SeedTag, str], owner_key: Optional[Pubkey], program_id: Pubkey) -> tuple[Pubkey, int]:
    try:
        tag = SeedTag(tag)
    except ValueError as exc:
        raise InvalidArgument(f"Unknown seed tag: {tag}") from exc
    if tag == SeedTag.CONTRACT_OWNER:
        owner_key = None
    elif owner_key is None:
        raise InvalidArgument(f"Seed tag '{tag.value}' requires an owner key")
    return find_program_address(AccountSeed(tag, owner_key).seeds(), program_id)


def contract_owner_address(program_id: Pubkey) -> Pubkey:
    return derive(SeedTag.CONTRACT_OWNER, None, program_id)[0]


def merchant_address(merchant: Pubkey, program_id: Pubkey) -> Pubkey:
    return derive(SeedTag.MERCHANT, merchant, program_id)[0]


def user_address(user: Pubkey, program_id: Pubkey) -> Pubkey:
    return derive(SeedTag.USER, user, program_id)[0]
