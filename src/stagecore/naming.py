"""
Value generators for the bootstrap stage: unique ids, regions, project ids.
"""

from __future__ import annotations

import os
import random
import string
from typing import Mapping, Optional, Sequence

from stagecore.errors import ConfigurationError

UNIQUE_ID_ALPHABET = string.digits + string.ascii_letters
UNIQUE_ID_LENGTH = 6

# Environment variables consulted for the GCP project, in order
GOOGLE_PROJECT_ENV_VARS = (
    "GOOGLE_PROJECT",
    "GOOGLE_CLOUD_PROJECT",
    "GOOGLE_CLOUD_PROJECT_ID",
    "GCLOUD_PROJECT",
    "CLOUDSDK_CORE_PROJECT",
)

# Regions where Cloud SQL for MySQL is generally available
GCP_REGIONS = (
    "asia-east1",
    "asia-northeast1",
    "asia-south1",
    "asia-southeast1",
    "australia-southeast1",
    "europe-north1",
    "europe-west1",
    "europe-west2",
    "europe-west3",
    "europe-west4",
    "northamerica-northeast1",
    "southamerica-east1",
    "us-central1",
    "us-east1",
    "us-east4",
    "us-west1",
    "us-west2",
)


def unique_id(rng: Optional[random.Random] = None, length: int = UNIQUE_ID_LENGTH) -> str:
    """
    Return a short base-62 id, unique enough to namespace test resources.

    Callers lower-case it when the resource name only allows lowercase.
    """
    rng = rng or random.SystemRandom()
    return "".join(rng.choice(UNIQUE_ID_ALPHABET) for _ in range(length))


def instance_name(prefix: str, rng: Optional[random.Random] = None) -> str:
    """Build a resource name such as ``mysql-test-a1b2c3``."""
    return f"{prefix}-{unique_id(rng).lower()}"


def google_project_id(environ: Optional[Mapping[str, str]] = None) -> str:
    """
    Discover the GCP project from the environment.

    Raises:
        ConfigurationError: None of the project variables is set
    """
    environ = os.environ if environ is None else environ
    for name in GOOGLE_PROJECT_ENV_VARS:
        value = environ.get(name, "").strip()
        if value:
            return value
    raise ConfigurationError(
        f"GCP project not set; export one of {', '.join(GOOGLE_PROJECT_ENV_VARS)}"
    )


def random_region(
    approved: Optional[Sequence[str]] = None,
    forbidden: Optional[Sequence[str]] = None,
    rng: Optional[random.Random] = None,
    regions: Sequence[str] = GCP_REGIONS,
) -> str:
    """
    Pick a region at random.

    Args:
        approved: Restrict the choice to these regions
        forbidden: Never pick these regions
        rng: Random source (tests pass a seeded Random)
        regions: Candidate regions

    Raises:
        ConfigurationError: The filters leave no region to choose from
    """
    rng = rng or random.SystemRandom()
    candidates = [r for r in regions if not approved or r in approved]
    candidates = [r for r in candidates if not forbidden or r not in forbidden]
    if not candidates:
        raise ConfigurationError("No region left after applying approved/forbidden filters")
    return rng.choice(sorted(candidates))
