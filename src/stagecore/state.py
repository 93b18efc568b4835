"""
Key-value state persistence for staged tests.

Stages of one test communicate through values persisted under the test
directory, so a later stage (or a later process invocation targeting the
same directory) can pick up where an earlier one left off:

    <test_dir>/.test-data/instance-name.json
    <test_dir>/.test-data/region.json
    <test_dir>/.test-data/terraform-options.json

Each key is one JSON document. Writes go through a temp file and an atomic
rename under an exclusive file lock, so a reader never observes a partially
written value.

Example:
    from stagecore.state import StateStore

    store = StateStore()
    store.save_string(test_dir, "region", "us-central1")

    # ...possibly in another process...
    region = store.load_string(test_dir, "region")
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import shutil
import sys
import tempfile
from pathlib import Path
from typing import IO, Any, Generator, List, Union

from pydantic import ValidationError

from stagecore.errors import CorruptDataError, NotFoundError, StorageError
from stagecore.provisioning.base import ProvisioningConfig

logger = logging.getLogger(__name__)

PathLike = Union[str, "os.PathLike[str]"]

DEFAULT_TEST_DATA_FOLDER = ".test-data"

# Well-known keys written by the cloud-sql-mysql stages
KEY_INSTANCE_NAME = "instance-name"
KEY_REGION = "region"
KEY_PROJECT_ID = "project-id"
KEY_PROVISIONING_CONFIG = "terraform-options"


# Cross-platform file locking
if sys.platform == "win32":
    import msvcrt

    def _lock_file(f: IO, exclusive: bool = True) -> None:
        """Lock file on Windows."""
        msvcrt.locking(f.fileno(), msvcrt.LK_LOCK if exclusive else msvcrt.LK_RLCK, 1)

    def _unlock_file(f: IO) -> None:
        """Unlock file on Windows."""
        msvcrt.locking(f.fileno(), msvcrt.LK_UNLCK, 1)
else:
    import fcntl

    def _lock_file(f: IO, exclusive: bool = True) -> None:
        """Lock file on Unix."""
        fcntl.flock(f.fileno(), fcntl.LOCK_EX if exclusive else fcntl.LOCK_SH)

    def _unlock_file(f: IO) -> None:
        """Unlock file on Unix."""
        fcntl.flock(f.fileno(), fcntl.LOCK_UN)


@contextlib.contextmanager
def file_lock(path: Path, exclusive: bool = True) -> Generator[IO, None, None]:
    """
    Context manager for file locking.

    Creates a lock file adjacent to the target file and acquires a lock on it.
    This prevents a reader in one process from racing a writer in another.

    Args:
        path: Path to the file being protected
        exclusive: If True, acquire exclusive (write) lock; otherwise shared (read) lock

    Yields:
        The lock file handle
    """
    lock_path = path.with_suffix(path.suffix + ".lock")
    lock_path.touch(exist_ok=True)

    lock_file = open(lock_path, "r+")
    try:
        _lock_file(lock_file, exclusive)
        yield lock_file
    finally:
        try:
            _unlock_file(lock_file)
        except OSError as e:
            logger.debug(f"Failed to unlock {lock_path}: {e}")
        finally:
            lock_file.close()


def _validate_key(key: str, directory: PathLike) -> str:
    if not isinstance(key, str) or not key or key in (".", "..") or "/" in key or "\\" in key:
        raise StorageError(
            f"Invalid test data key: {key!r}",
            directory=str(directory),
            key=str(key),
        )
    return key


class StateStore:
    """
    Durable, file-backed mapping from (test directory, key) to a JSON value.

    The store holds no state of its own beyond its configuration, so any
    number of instances (and processes) may point at the same directory.
    Concurrent writers to the same key are not coordinated beyond the file
    lock: the last completed write wins.
    """

    def __init__(self, data_folder: str = DEFAULT_TEST_DATA_FOLDER, indent: int = 2):
        """
        Initialize state store.

        Args:
            data_folder: Folder inside each test directory holding the values
            indent: JSON indentation, kept human-readable for debugging
        """
        self.data_folder = data_folder
        self.indent = indent

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def data_dir(self, directory: PathLike) -> Path:
        """Return the folder holding the values of a test directory."""
        return Path(directory).resolve() / self.data_folder

    def format_test_data_path(self, directory: PathLike, key: str) -> Path:
        """Return the file that stores ``key`` for ``directory``."""
        return self.data_dir(directory) / f"{_validate_key(key, directory)}.json"

    # ------------------------------------------------------------------
    # Generic save / load
    # ------------------------------------------------------------------

    def save(self, directory: PathLike, key: str, value: Any) -> None:
        """
        Serialize ``value`` and durably write it under ``(directory, key)``.

        Overwrites any previous value. The value is on disk (fsynced and
        renamed into place) when this returns.

        Raises:
            StorageError: The directory is missing, the value is not JSON
                serializable, or the write failed.
        """
        test_dir = Path(directory)
        if not test_dir.is_dir():
            raise StorageError(
                f"Test directory does not exist: {test_dir}",
                directory=str(test_dir),
                key=key,
            )

        path = self.format_test_data_path(test_dir, key)
        try:
            payload = json.dumps(value, indent=self.indent, sort_keys=True)
        except (TypeError, ValueError) as e:
            raise StorageError(
                f"Value for '{key}' is not JSON serializable: {e}",
                directory=str(test_dir),
                key=key,
            ) from e

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with file_lock(path, exclusive=True):
                self._atomic_write(path, payload)
        except OSError as e:
            raise StorageError(
                f"Failed to save test data '{key}' to {path}: {e}",
                directory=str(test_dir),
                key=key,
            ) from e

        logger.debug(f"Saved test data '{key}' to {path}")

    def load(self, directory: PathLike, key: str) -> Any:
        """
        Return the value previously saved under ``(directory, key)``.

        Raises:
            NotFoundError: Nothing was saved under this key.
            CorruptDataError: The stored document is not valid JSON.
            StorageError: The file exists but could not be read.
        """
        path = self.format_test_data_path(directory, key)
        if not path.is_file():
            raise NotFoundError(
                f"No test data saved for '{key}' in {path.parent}",
                directory=str(directory),
                key=key,
            )

        try:
            with file_lock(path, exclusive=False):
                raw = path.read_text(encoding="utf-8")
        except OSError as e:
            raise StorageError(
                f"Failed to read test data '{key}' from {path}: {e}",
                directory=str(directory),
                key=key,
            ) from e

        try:
            value = json.loads(raw)
        except json.JSONDecodeError as e:
            raise CorruptDataError(
                f"Corrupted test data for '{key}' in {path}: {e}",
                directory=str(directory),
                key=key,
            ) from e

        logger.debug(f"Loaded test data '{key}' from {path}")
        return value

    def _atomic_write(self, path: Path, payload: str) -> None:
        """Write to a temp file in the same folder, then rename over the target."""
        fd, temp_path = tempfile.mkstemp(
            dir=path.parent,
            prefix=f".{path.stem}-",
            suffix=".tmp",
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_path, path)
        except BaseException:
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise

    # ------------------------------------------------------------------
    # Typed helpers
    # ------------------------------------------------------------------

    def save_string(self, directory: PathLike, key: str, value: str) -> None:
        """Save a string value; anything else is StorageError."""
        if not isinstance(value, str):
            raise StorageError(
                f"Refusing to save {type(value).__name__} as string test data '{key}'",
                directory=str(directory),
                key=key,
            )
        self.save(directory, key, value)

    def load_string(self, directory: PathLike, key: str) -> str:
        """Load a string value; anything else is CorruptDataError."""
        value = self.load(directory, key)
        if not isinstance(value, str):
            raise CorruptDataError(
                f"Test data '{key}' is {type(value).__name__}, expected str",
                directory=str(directory),
                key=key,
            )
        return value

    def save_int(self, directory: PathLike, key: str, value: int) -> None:
        """Save an integer value; bools and anything else are StorageError."""
        if isinstance(value, bool) or not isinstance(value, int):
            raise StorageError(
                f"Refusing to save {type(value).__name__} as integer test data '{key}'",
                directory=str(directory),
                key=key,
            )
        self.save(directory, key, value)

    def load_int(self, directory: PathLike, key: str) -> int:
        """Load an integer value; anything else is CorruptDataError."""
        value = self.load(directory, key)
        if isinstance(value, bool) or not isinstance(value, int):
            raise CorruptDataError(
                f"Test data '{key}' is {type(value).__name__}, expected int",
                directory=str(directory),
                key=key,
            )
        return value

    def save_provisioning_config(
        self,
        directory: PathLike,
        config: ProvisioningConfig,
        key: str = KEY_PROVISIONING_CONFIG,
    ) -> None:
        """Save the provisioning configuration so teardown can rebuild it later."""
        self.save(directory, key, config.model_dump(mode="json"))

    def load_provisioning_config(
        self,
        directory: PathLike,
        key: str = KEY_PROVISIONING_CONFIG,
    ) -> ProvisioningConfig:
        """Load and validate a saved provisioning configuration."""
        data = self.load(directory, key)
        try:
            return ProvisioningConfig.model_validate(data)
        except ValidationError as e:
            raise CorruptDataError(
                f"Test data '{key}' is not a valid provisioning config: {e}",
                directory=str(directory),
                key=key,
            ) from e

    # ------------------------------------------------------------------
    # Inspection and cleanup
    # ------------------------------------------------------------------

    def is_test_data_present(self, directory: PathLike, key: str) -> bool:
        """True if a value has been saved under ``key``."""
        return self.format_test_data_path(directory, key).is_file()

    def keys(self, directory: PathLike) -> List[str]:
        """List the keys saved for a test directory, sorted."""
        data_dir = self.data_dir(directory)
        if not data_dir.is_dir():
            return []
        return sorted(p.stem for p in data_dir.glob("*.json") if p.is_file())

    def delete(self, directory: PathLike, key: str) -> bool:
        """
        Delete one saved value.

        Returns:
            True if a value was deleted, False if none existed
        """
        path = self.format_test_data_path(directory, key)
        if not path.exists():
            return False
        try:
            with file_lock(path, exclusive=True):
                path.unlink()
            path.with_suffix(path.suffix + ".lock").unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(
                f"Failed to delete test data '{key}' at {path}: {e}",
                directory=str(directory),
                key=key,
            ) from e
        logger.debug(f"Deleted test data '{key}' from {path.parent}")
        return True

    def clean_up_test_data(self, directory: PathLike) -> None:
        """Remove every saved value of a test directory."""
        data_dir = self.data_dir(directory)
        if not data_dir.exists():
            return
        try:
            shutil.rmtree(data_dir)
        except OSError as e:
            raise StorageError(
                f"Failed to clean up test data in {data_dir}: {e}",
                directory=str(directory),
            ) from e
        logger.info(f"Cleaned up test data in {data_dir}")
