"""
Pydantic models for monitored accounts and Subscan API responses.

These models validate the JSON returned by the chain-indexing API and the
YAML account definitions, so the rest of the package only deals with typed
objects.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Generic, Optional, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field


class Network(str, Enum):
    """Supported Substrate networks."""
    POLKADOT = "polkadot"
    KUSAMA = "kusama"

    @property
    def api_host(self) -> str:
        """Subscan host serving this network."""
        return f"https://{self.value}.api.subscan.io"


class Module(str, Enum):
    """Kind of chain data a poller collects."""
    TRANSFER = "transfer"
    REWARDS_SLASHES = "rewards_slashes"
    NOMINATIONS = "nominations"


class Context(BaseModel):
    """
    A monitored account.

    Immutable once loaded; every stored event is tagged with the full
    context so the owning account can be identified later.
    """
    model_config = ConfigDict(frozen=True)

    stash: str
    network: Network
    description: str = ""

    def id(self) -> tuple[str, str]:
        """Identifier used to match stored events back to this account."""
        return (self.stash, self.network.value)

    def __str__(self) -> str:
        return f"{self.stash} ({self.network.value})"


class AccountDisplay(BaseModel):
    """Address block Subscan attaches to accounts in its responses."""
    address: str = ""
    display: Optional[str] = None


class Transfer(BaseModel):
    """Balance transfer as listed by /api/scan/transfers."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    from_: str = Field(default="", alias="from")
    to: str = ""
    extrinsic_index: str = ""
    event_idx: Optional[int] = None
    success: bool = True
    hash: str
    block_num: int = 0
    block_timestamp: int = 0
    module: str = ""
    amount: str = "0"
    fee: str = "0"
    nonce: int = 0
    asset_symbol: str = ""

    @property
    def natural_key(self) -> str:
        # A batch extrinsic can carry several transfers under one hash.
        if self.event_idx is None:
            return self.hash
        return f"{self.hash}:{self.event_idx}"

    @property
    def amount_value(self) -> float:
        try:
            return float(self.amount)
        except ValueError:
            return 0.0


class RewardSlash(BaseModel):
    """Staking reward or slash event as listed by /api/scan/account/reward_slash."""
    model_config = ConfigDict(extra="allow")

    account: str = ""
    amount: str = "0"
    block_num: int = 0
    block_timestamp: int = 0
    event_index: str
    event_idx: int = 0
    event_id: str = ""
    extrinsic_hash: str = ""
    extrinsic_idx: int = 0
    module_id: str = ""
    params: Any = None
    stash: str = ""

    @property
    def natural_key(self) -> str:
        return self.event_index


class Nomination(BaseModel):
    """
    Validator currently nominated by an account (/api/scan/staking/voted).

    Keyed on the validator address alone, so each validator is recorded
    once per account: the first time it is seen nominated. Dropping a
    validator and nominating it again later stores nothing new, and the
    table is not a history of nomination changes.
    """
    model_config = ConfigDict(extra="allow")

    stash_account_display: AccountDisplay
    controller_account_display: Optional[AccountDisplay] = None
    bonded_nominators: Optional[str] = None
    bonded_owner: Optional[str] = None
    rank_validator: Optional[int] = None
    validator_prefs_value: Optional[int] = None

    @property
    def natural_key(self) -> str:
        return self.stash_account_display.address

    @property
    def block_num(self) -> int:
        return 0

    @property
    def block_timestamp(self) -> int:
        return 0


class TransfersPage(BaseModel):
    count: int = 0
    transfers: Optional[list[Transfer]] = None


class RewardsSlashesPage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    count: int = 0
    items: Optional[list[RewardSlash]] = Field(default=None, alias="list")


class NominationsPage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    count: int = 0
    items: Optional[list[Nomination]] = Field(default=None, alias="list")


T = TypeVar("T", bound=BaseModel)


class Response(BaseModel, Generic[T]):
    """
    Subscan response envelope.

    A non-zero ``code`` signals an API-side error; the payload lives in
    ``data``.
    """
    code: int = 0
    message: str = ""
    generated_at: int = 0
    data: T


TransfersResponse = Response[TransfersPage]
RewardsSlashesResponse = Response[RewardsSlashesPage]
NominationsResponse = Response[NominationsPage]


ChainRecord = Union[Transfer, RewardSlash, Nomination]


@dataclass(frozen=True)
class ContextData:
    """One chain record joined with the account it was fetched for."""
    context: Context
    data: ChainRecord

    def to_row(self) -> dict:
        """Flatten into the column layout of the event tables."""
        return {
            "stash": self.context.stash,
            "network": self.context.network.value,
            "description": self.context.description,
            "event_key": self.data.natural_key,
            "block_num": self.data.block_num,
            "block_timestamp": self.data.block_timestamp,
            "data": self.data.model_dump_json(by_alias=True),
            "recorded_at": datetime.now(timezone.utc).isoformat(),
        }
