"""
Payload types for global refresh requests.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, Optional


class RefreshScope(Enum):
    """What a global refresh request should reload."""
    USER_PROFILE = "user-profile"
    CURRENT_SCREEN = "current-screen"
    ALL_DATA = "all-data"
    SPECIFIC_QUERY = "specific-query"


@dataclass
class RefreshOptions:
    """Caller options shared by every RefreshService operation."""
    show_toast: bool = True
    query_keys: List[str] = field(default_factory=list)
    on_success: Optional[Callable[[], None]] = None
    on_error: Optional[Callable[[Exception], None]] = None


@dataclass(frozen=True)
class RefreshRequest:
    """Payload of the global-refresh-requested channel."""
    scope: RefreshScope
    options: Any = None
