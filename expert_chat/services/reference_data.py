"""
Static reference data used by the chat tools.

The gazetteer, crop knowledge table and fallback scheme list ship as JSON
files under `expert_chat/data`. They are loaded once at startup and handed
to the tool executor as read-only mappings so concurrent requests can share
them safely.
"""
import json
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping, Optional, Tuple

from .. import config

# Central India; used when a place name is not in the gazetteer
DEFAULT_COORDINATES = (22.7196, 75.8577)


def _freeze(value: Any) -> Any:
    if isinstance(value, dict):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    if isinstance(value, list):
        return tuple(_freeze(v) for v in value)
    return value


def _load(path: Path) -> Any:
    return _freeze(json.loads(path.read_text(encoding="utf-8")))


@dataclass(frozen=True)
class ReferenceData:
    gazetteer: Mapping[str, Mapping[str, float]]
    crop_knowledge: Mapping[str, Mapping[str, Any]]
    common_schemes: Tuple[Mapping[str, str], ...]

    def resolve_coordinates(self, location: str) -> Tuple[float, float]:
        """Approximate lat/lon for a free-text place name (first gazetteer key it contains)."""
        text = (location or "").lower()
        for key, coords in self.gazetteer.items():
            if key in text:
                return coords["lat"], coords["lon"]
        return DEFAULT_COORDINATES


def load_reference_data(data_dir: Optional[Path] = None) -> ReferenceData:
    data_dir = data_dir or config.DATA_DIR
    return ReferenceData(
        gazetteer=_load(data_dir / "gazetteer.json"),
        crop_knowledge=_load(data_dir / "crop_knowledge.json"),
        common_schemes=_load(data_dir / "common_schemes.json"),
    )
