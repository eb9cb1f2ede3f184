import json
import os
import tempfile
from pathlib import Path
from typing import Iterable, List

from .errors import PersistenceError
from .models import Job


class JobStore:
    """Full-snapshot JSON file holding every job record.

    There are no row-level updates: callers keep the collection in memory and
    hand the whole thing to ``save_all`` after each transition.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> List[Job]:
        if not self.path.exists():
            return []
        try:
            with self.path.open("r", encoding="utf-8") as f:
                content = f.read().strip()
            if not content:
                return []
            data = json.loads(content)
            if not isinstance(data, dict) or not isinstance(data.get("jobs", []), list):
                raise ValueError("expected an object with a \"jobs\" list")
            return [Job.from_dict(item) for item in data.get("jobs", [])]
        except (json.JSONDecodeError, OSError, AttributeError, KeyError, TypeError, ValueError) as e:
            raise PersistenceError(f"Could not read job store {self.path}: {e}") from e

    def save_all(self, jobs: Iterable[Job]) -> None:
        """Atomically replace the snapshot: write a temp file, fsync, rename."""
        document = {"jobs": [job.to_dict() for job in jobs]}
        tmp_name = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=str(self.path.parent)
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(document, f, indent=2, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
            tmp_name = None
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(f"Could not write job store {self.path}: {e}") from e
        finally:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)
