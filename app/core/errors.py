from __future__ import annotations


class VersionConflict(Exception):
    """A cart write lost the race: the document changed since it was read."""

    def __init__(self, user_id: str, message: str = "cart was modified concurrently"):
        super().__init__(f"{message} (user={user_id})")
        self.user_id = user_id
