"""Cache file I/O.

The cache file is the durable record of an environment: its spec, the
ids of every resource created for it and the latest conditions. It is
the only thing ``delete()`` needs to find the resources again.
"""

from __future__ import annotations

import os
from pathlib import Path

import yaml
from pydantic import ValidationError as PydanticValidationError

from holodeck.api.environment import Environment
from holodeck.exceptions import CacheError

CACHE_DIR_MODE = 0o750
CACHE_FILE_MODE = 0o600


def read_environment(path: Path) -> Environment:
    """Load an environment document from YAML.

    Raises:
        CacheError: If the file is missing, empty or not a valid document.
    """
    try:
        data = yaml.safe_load(path.read_text())
    except OSError as e:
        raise CacheError(f"error reading {path}: {e}") from e
    except yaml.YAMLError as e:
        raise CacheError(f"error parsing {path}: {e}") from e

    if not data:
        raise CacheError(f"{path} is empty")

    try:
        return Environment.model_validate(data)
    except PydanticValidationError as e:
        raise CacheError(f"invalid environment document {path}: {e}") from e


def write_environment(env: Environment, path: Path) -> None:
    """Write an environment document with owner-only permissions.

    The parent directory is created if needed. Permissions are enforced
    even when the file already existed with broader ones.
    """
    data = yaml.safe_dump(env.to_document(), sort_keys=False, default_flow_style=False)
    try:
        path.parent.mkdir(mode=CACHE_DIR_MODE, parents=True, exist_ok=True)
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, CACHE_FILE_MODE)
        with os.fdopen(fd, "w") as f:
            f.write(data)
        os.chmod(path, CACHE_FILE_MODE)
    except OSError as e:
        raise CacheError(f"error writing cache file {path}: {e}") from e
