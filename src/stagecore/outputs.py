"""
Typed access to provisioning outputs.

Terraform reports outputs as untyped JSON. Outputs wraps them and fails
loudly on a missing key or a type mismatch instead of coercing.
"""

from __future__ import annotations

from typing import Any, Dict, Iterator, List, Mapping

from stagecore.errors import OutputNotFoundError, OutputTypeError


class Outputs(Mapping[str, Any]):
    """Read-only bag of provisioning outputs with typed accessors."""

    def __init__(self, values: Mapping[str, Any]):
        self._values: Dict[str, Any] = dict(values)

    @classmethod
    def from_terraform_json(cls, payload: Mapping[str, Any]) -> "Outputs":
        """
        Build from ``terraform output -json``.

        Each output is ``{"sensitive": bool, "type": ..., "value": ...}``.
        """
        values = {}
        for name, entry in payload.items():
            if isinstance(entry, Mapping) and "value" in entry:
                values[name] = entry["value"]
            else:
                values[name] = entry
        return cls(values)

    def __getitem__(self, key: str) -> Any:
        try:
            return self._values[key]
        except KeyError:
            raise OutputNotFoundError(
                f"Output '{key}' not found; available outputs: {sorted(self._values)}"
            ) from None

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"Outputs({sorted(self._values)})"

    def _typed(self, key: str, expected: type, label: str) -> Any:
        value = self[key]
        if isinstance(value, bool) and expected is not bool:
            raise OutputTypeError(f"Output '{key}' is bool, expected {label}")
        if not isinstance(value, expected):
            raise OutputTypeError(
                f"Output '{key}' is {type(value).__name__}, expected {label}"
            )
        return value

    def get_str(self, key: str) -> str:
        return self._typed(key, str, "string")

    def get_int(self, key: str) -> int:
        return self._typed(key, int, "number (integer)")

    def get_bool(self, key: str) -> bool:
        return self._typed(key, bool, "bool")

    def get_list(self, key: str) -> List[Any]:
        return self._typed(key, list, "list")

    def get_map(self, key: str) -> Dict[str, Any]:
        return self._typed(key, dict, "map")

    def to_dict(self) -> Dict[str, Any]:
        """Plain copy, suitable for persisting in the state store."""
        return dict(self._values)
