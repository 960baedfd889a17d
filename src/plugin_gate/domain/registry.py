from dataclasses import dataclass, field
from enum import Enum
from typing import List


PLUGIN_DEFAULT_THRESHOLD = 2


class UpdateResult(str, Enum):
    UPDATED = "updated"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class PluginRecord:
    plugin_id: int
    name: str
    enabled: bool
    internal: bool
    threshold: int = PLUGIN_DEFAULT_THRESHOLD
    white_list_users: List[int] = field(default_factory=list)
    black_list_users: List[int] = field(default_factory=list)


@dataclass(frozen=True)
class GroupRecord:
    group_id: int
    name: str
    external_id: int
    admins: List[int] = field(default_factory=list)
    expired_at: str = ""
    plugins: List[int] = field(default_factory=list)


@dataclass
class NewGroup:
    """Group payload before it has a persistent id."""

    name: str
    external_id: int
    admins: List[int] = field(default_factory=list)
    expired_at: str = ""
    plugins: List[int] = field(default_factory=list)
