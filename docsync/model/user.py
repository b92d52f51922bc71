"""Acting-user context used to attribute history entries."""

from dataclasses import dataclass


@dataclass(frozen=True)
class User:
    """The person on whose behalf an edit or a sync is performed."""

    user_name: str
    organisation: str = ""
