"""
Test directory preparation.

Each test run works on its own copy of the infrastructure code so parallel
runs never share Terraform state or persisted stage values. When a
persistent work directory is configured, an existing copy is reused so a
later invocation (e.g. ``SKIP_BOOTSTRAP=true SKIP_DEPLOY=true``) finds the
values and state an earlier invocation left behind.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
from pathlib import Path
from typing import Optional, Union

from stagecore.errors import ConfigurationError

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

# Never copied: local Terraform state, provider caches, persisted test values
COPY_IGNORE_PATTERNS = (
    ".git",
    ".terraform",
    ".terraform.lock.hcl",
    "*.tfstate",
    "*.tfstate.backup",
    ".test-data",
    "__pycache__",
)


def prepare_test_directory(
    root_folder: PathLike,
    module_folder: PathLike,
    work_dir: Optional[PathLike] = None,
) -> Path:
    """
    Copy ``root_folder`` somewhere writable and return the module inside it.

    The whole root is copied (not just the module) so relative module
    sources like ``../../modules/mysql`` keep resolving.

    Args:
        root_folder: Repository root holding the infrastructure code
        module_folder: Module path relative to ``root_folder``
        work_dir: Persistent parent for the copy; a fresh temp dir when None

    Returns:
        Absolute path of the module folder inside the copy (the test directory)

    Raises:
        ConfigurationError: The root or module folder does not exist
    """
    root = Path(root_folder).resolve()
    module_rel = Path(module_folder)
    if not (root / module_rel).is_dir():
        raise ConfigurationError(f"Module folder not found: {root / module_rel}")

    if work_dir is not None:
        destination = Path(work_dir).expanduser().resolve() / root.name
        if (destination / module_rel).is_dir():
            logger.info(f"Reusing test directory {destination / module_rel}")
            return destination / module_rel
        destination.parent.mkdir(parents=True, exist_ok=True)
    else:
        destination = Path(tempfile.mkdtemp(prefix=f"stagecore-{root.name}-")) / root.name

    shutil.copytree(
        root,
        destination,
        ignore=shutil.ignore_patterns(*COPY_IGNORE_PATTERNS),
        symlinks=True,
    )
    logger.info(f"Copied {root} to {destination}")
    return destination / module_rel


def remove_test_directory(test_dir: PathLike, module_folder: PathLike) -> None:
    """Delete the copy created by prepare_test_directory."""
    root_copy = Path(test_dir).resolve()
    for _ in Path(module_folder).parts:
        root_copy = root_copy.parent
    if root_copy.exists():
        shutil.rmtree(root_copy)
        logger.info(f"Removed test directory {root_copy}")
    # Temp copies live in their own mkdtemp parent
    parent = root_copy.parent
    if parent.name.startswith("stagecore-") and parent.exists() and not any(parent.iterdir()):
        parent.rmdir()
