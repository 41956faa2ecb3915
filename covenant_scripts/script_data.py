"""
Covenant Scripts - Script Data

Validated, immutable parameter sets for the taproot covenant protocols and
the leaf scripts they compile to. One engine serves every generation; the
``ScriptProfile`` selects the key convention, whether an operator clause is
present and which fields the data embed output carries.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple

from .builder import (
    build_single_key_script,
    build_multi_key_script,
    build_timelock_script,
)
from .data_embed import (
    DataEmbedLayout,
    DataEmbedPayload,
    STAKING_LAYOUT,
    LOCKING_LAYOUT,
    BRIDGE_LAYOUT,
    build_data_embed_script,
)
from .constants import MAGIC_BYTES_LENGTH, EVM_ADDRESS_LENGTH, MAX_RELATIVE_TIMELOCK
from .exceptions import InvalidScriptDataError


logger = logging.getLogger(__name__)


class ScriptProfile(Enum):
    """Protocol generations sharing the taproot covenant engine."""
    STAKING = "staking"
    LOCKING = "locking"
    BRIDGE = "bridge"

    @property
    def layout(self) -> DataEmbedLayout:
        return _PROFILE_LAYOUTS[self]

    @property
    def has_operator_clause(self) -> bool:
        return self is ScriptProfile.LOCKING


_PROFILE_LAYOUTS = {
    ScriptProfile.STAKING: STAKING_LAYOUT,
    ScriptProfile.LOCKING: LOCKING_LAYOUT,
    ScriptProfile.BRIDGE: BRIDGE_LAYOUT,
}


@dataclass(frozen=True)
class SlashableScripts:
    """Compiled leaf scripts of a slashable staking or locking position."""
    timelock: bytes
    unbonding: bytes
    slashing: bytes
    unbonding_timelock: bytes
    data_embed: Optional[bytes] = None


@dataclass(frozen=True)
class BridgeScripts:
    """Compiled leaf scripts of a bridge deposit."""
    timelock: bytes
    transfer: bytes
    data_embed: Optional[bytes] = None


def _check_timelock(name: str, value: int) -> None:
    if not isinstance(value, int) or isinstance(value, bool) or not 1 <= value <= MAX_RELATIVE_TIMELOCK:
        raise InvalidScriptDataError(f"Invalid {name}: {value}")


def _check_distinct(keys) -> None:
    if len(set(keys)) != len(keys):
        raise InvalidScriptDataError("Duplicate keys provided")


def _check_threshold(threshold: int, covenant_keys) -> None:
    if not isinstance(threshold, int) or threshold < 1 or threshold > len(covenant_keys):
        raise InvalidScriptDataError(
            f"Invalid covenant threshold {threshold} for {len(covenant_keys)} keys"
        )


@dataclass(frozen=True)
class SlashableScriptData:
    """
    Parameters of a slashable staking (``STAKING``) or delegated locking
    (``LOCKING``) position.

    All validation happens on construction; an instance that exists is
    valid and compiles to the same bytes every time.

    Args:
        owner_key: Staker or locker x-only public key
        covenant_keys: Covenant committee x-only public keys
        covenant_threshold: Required covenant signatures
        timelock: Lock period in blocks
        unbonding_timelock: Unbonding period in blocks
        magic_bytes: 4-byte protocol tag of the data embed output
        operator_keys: Operator keys (``LOCKING`` only, at least one)
        profile: Protocol generation
    """
    owner_key: bytes
    covenant_keys: Tuple[bytes, ...]
    covenant_threshold: int
    timelock: int
    unbonding_timelock: int
    magic_bytes: bytes
    operator_keys: Tuple[bytes, ...] = ()
    profile: ScriptProfile = ScriptProfile.STAKING

    def __post_init__(self):
        # Store immutable copies so callers cannot reorder keys afterwards
        object.__setattr__(self, 'owner_key', bytes(self.owner_key or b''))
        object.__setattr__(self, 'covenant_keys', tuple(bytes(k) for k in self.covenant_keys or ()))
        object.__setattr__(self, 'operator_keys', tuple(bytes(k) for k in self.operator_keys or ()))
        object.__setattr__(self, 'magic_bytes', bytes(self.magic_bytes or b''))
        self._validate()

    def _validate(self) -> None:
        if self.profile not in (ScriptProfile.STAKING, ScriptProfile.LOCKING):
            raise InvalidScriptDataError(f"Profile {self.profile.name} has no slashing path")
        if not self.owner_key or not self.covenant_keys or not self.magic_bytes:
            raise InvalidScriptDataError("Missing required input values")

        key_length = self.profile.layout.key_length
        if len(self.owner_key) != key_length:
            raise InvalidScriptDataError("Invalid owner key length")
        if any(len(k) != key_length for k in self.covenant_keys):
            raise InvalidScriptDataError("Invalid covenant key length")

        if self.profile.has_operator_clause:
            if not self.operator_keys:
                raise InvalidScriptDataError("Missing operator keys")
            if any(len(k) != key_length for k in self.operator_keys):
                raise InvalidScriptDataError("Invalid operator key length")
        elif self.operator_keys:
            raise InvalidScriptDataError("Operator keys are only used by the locking profile")

        _check_distinct((self.owner_key,) + self.operator_keys + self.covenant_keys)
        _check_threshold(self.covenant_threshold, self.covenant_keys)
        _check_timelock("timelock", self.timelock)
        _check_timelock("unbonding timelock", self.unbonding_timelock)

        if len(self.magic_bytes) != MAGIC_BYTES_LENGTH:
            raise InvalidScriptDataError("Invalid magic bytes length")

    @property
    def key_length(self) -> int:
        return self.profile.layout.key_length

    def build_timelock_script(self, timelock: Optional[int] = None) -> bytes:
        """Owner-only script spendable after ``timelock`` blocks (defaults to the lock period)."""
        if timelock is None:
            timelock = self.timelock
        return build_timelock_script(self.owner_key, timelock, self.key_length)

    def build_unbonding_timelock_script(self) -> bytes:
        return build_timelock_script(self.owner_key, self.unbonding_timelock, self.key_length)

    def build_unbonding_script(self) -> bytes:
        """
        Build the cooperative unbonding script.

        ``single(owner, VERIFY) || multi(covenants, threshold)``
        """
        return (
            build_single_key_script(self.owner_key, True, self.key_length)
            + build_multi_key_script(self.covenant_keys, self.covenant_threshold, False, self.key_length)
        )

    def build_slashing_script(self) -> bytes:
        """
        Build the slashing script.

        ``single(owner, VERIFY) || [multi(operators, 1, VERIFY)] || multi(covenants, threshold)``
        where the operator clause is only present for the locking profile.
        """
        script = build_single_key_script(self.owner_key, True, self.key_length)
        if self.profile.has_operator_clause:
            script += build_multi_key_script(self.operator_keys, 1, True, self.key_length)
        # Covenants close the script so no VERIFY is needed
        script += build_multi_key_script(
            self.covenant_keys, self.covenant_threshold, False, self.key_length
        )
        return script

    def data_embed_payload(self) -> DataEmbedPayload:
        return DataEmbedPayload(
            magic_bytes=self.magic_bytes,
            owner_key=self.owner_key,
            operator_key=self.operator_keys[0] if self.profile.has_operator_clause else None,
            timelock=self.timelock,
        )

    def build_data_embed_script(self) -> bytes:
        return build_data_embed_script(self.data_embed_payload(), self.profile.layout)

    def build_scripts(self) -> SlashableScripts:
        """Compile every leaf script of the position."""
        scripts = SlashableScripts(
            timelock=self.build_timelock_script(),
            unbonding=self.build_unbonding_script(),
            slashing=self.build_slashing_script(),
            unbonding_timelock=self.build_unbonding_timelock_script(),
            data_embed=self.build_data_embed_script(),
        )
        logger.debug(f"Built {self.profile.value} scripts for owner {self.owner_key.hex()}")
        return scripts


@dataclass(frozen=True)
class BridgeScriptData:
    """
    Parameters of a bridge deposit.

    The transfer leaf is the covenant threshold clause alone; the user can
    recapture the deposit through the timelock leaf once ``transfer_timelock``
    blocks have passed.
    """
    user_key: bytes
    covenant_keys: Tuple[bytes, ...]
    covenant_threshold: int
    transfer_timelock: int
    magic_bytes: bytes
    evm_address: bytes
    profile: ScriptProfile = field(default=ScriptProfile.BRIDGE, init=False)

    def __post_init__(self):
        object.__setattr__(self, 'user_key', bytes(self.user_key or b''))
        object.__setattr__(self, 'covenant_keys', tuple(bytes(k) for k in self.covenant_keys or ()))
        object.__setattr__(self, 'magic_bytes', bytes(self.magic_bytes or b''))
        object.__setattr__(self, 'evm_address', bytes(self.evm_address or b''))

        if not self.user_key or not self.covenant_keys or not self.magic_bytes or not self.evm_address:
            raise InvalidScriptDataError("Missing required input values")

        key_length = self.profile.layout.key_length
        if len(self.user_key) != key_length:
            raise InvalidScriptDataError("Invalid user key length")
        if any(len(k) != key_length for k in self.covenant_keys):
            raise InvalidScriptDataError("Invalid covenant key length")
        if len(self.evm_address) != EVM_ADDRESS_LENGTH:
            raise InvalidScriptDataError("Invalid EVM address length")
        if len(self.magic_bytes) != MAGIC_BYTES_LENGTH:
            raise InvalidScriptDataError("Invalid magic bytes length")

        _check_distinct((self.user_key,) + self.covenant_keys)
        _check_threshold(self.covenant_threshold, self.covenant_keys)
        _check_timelock("transfer timelock", self.transfer_timelock)

    def build_timelock_script(self) -> bytes:
        return build_timelock_script(self.user_key, self.transfer_timelock)

    def build_transfer_script(self) -> bytes:
        return build_multi_key_script(self.covenant_keys, self.covenant_threshold, False)

    def build_data_embed_script(self) -> bytes:
        payload = DataEmbedPayload(
            magic_bytes=self.magic_bytes,
            owner_key=self.user_key,
            evm_address=self.evm_address,
        )
        return build_data_embed_script(payload, self.profile.layout)

    def build_scripts(self) -> BridgeScripts:
        return BridgeScripts(
            timelock=self.build_timelock_script(),
            transfer=self.build_transfer_script(),
            data_embed=self.build_data_embed_script(),
        )
