"""
Stage skip policy.

Each stage can be bypassed by an external directive named after it:

    SKIP_BOOTSTRAP=true  SKIP_DEPLOY=true  stagecore run cloud-sql-mysql ...

An unset directive, or any value other than the skip value, runs the stage.
"""

from __future__ import annotations

import os
from typing import Iterable, Mapping, Optional

DEFAULT_SKIP_PREFIX = "SKIP_"
DEFAULT_SKIP_VALUE = "true"


class SkipPolicy:
    """
    Resolve whether a named stage should be bypassed.

    The policy reads from an injected mapping (``os.environ`` by default)
    at query time, so directives set before a stage starts are honored.
    """

    def __init__(
        self,
        environ: Optional[Mapping[str, str]] = None,
        prefix: str = DEFAULT_SKIP_PREFIX,
        skip_value: str = DEFAULT_SKIP_VALUE,
    ):
        self._environ = os.environ if environ is None else environ
        self.prefix = prefix
        self.skip_value = skip_value.strip().lower()

    @classmethod
    def from_config(cls, config, environ: Optional[Mapping[str, str]] = None) -> "SkipPolicy":
        """Build from a StageCoreConfig."""
        return cls(environ=environ, prefix=config.skip_prefix, skip_value=config.skip_value)

    @classmethod
    def from_overrides(
        cls,
        stages: Iterable[str],
        environ: Optional[Mapping[str, str]] = None,
        prefix: str = DEFAULT_SKIP_PREFIX,
        skip_value: str = DEFAULT_SKIP_VALUE,
    ) -> "SkipPolicy":
        """
        Layer explicit skips (e.g. ``--skip deploy``) over the environment.

        The environment mapping itself is never modified.
        """
        base = dict(os.environ if environ is None else environ)
        policy = cls(environ=base, prefix=prefix, skip_value=skip_value)
        for stage in stages:
            base[policy.directive_key(stage)] = skip_value
        return policy

    def directive_key(self, stage_name: str) -> str:
        """Name of the directive controlling ``stage_name``."""
        return f"{self.prefix}{stage_name.upper()}"

    def should_skip(self, stage_name: str) -> bool:
        """True iff the stage's directive is set to the skip value."""
        value = self._environ.get(self.directive_key(stage_name))
        if value is None:
            return False
        return value.strip().lower() == self.skip_value
