from datetime import timedelta
from pathlib import Path
from typing import Protocol


class Storage(Protocol):
    async def upload(self, job_name: str, path: Path) -> str:
        """Upload a local artifact and return its remote location."""
        ...

    async def age_out(self, job_name: str, retention: timedelta) -> int:
        """Delete remote artifacts of a job older than the retention window. Return how many were deleted."""
        ...

    async def test_connection(self) -> None:
        """Raise if the storage cannot be reached."""
        ...
