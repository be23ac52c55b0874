"""
Reference Ratebook

Static, versioned premium ranges keyed by policy type x jurisdiction x profile
band. Loaded once at process start and frozen; concurrent readers need no
locking.
"""
import json
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Mapping, Optional, Tuple

from advisor.core.config import settings
from advisor.core.exceptions import ReferenceDataMissing
from advisor.core.logging import logger


DEFAULT_RATEBOOK_PATH = Path(__file__).resolve().parents[2] / "data" / "ratebook.json"

AGE_BANDS = (
    ("16-24", 16, 24),
    ("25-64", 25, 64),
    ("65+", 65, 130),
)


def age_band(age: int) -> Optional[str]:
    """Ratebook band for an age in years; None outside insurable ages."""
    for band, low, high in AGE_BANDS:
        if low <= age <= high:
            return band
    return None


@dataclass(frozen=True)
class RateTable:
    """Ranges for one policy type."""
    dimension: str
    default_band: str
    jurisdictions: Mapping[str, Mapping[str, Tuple[int, int]]]


@dataclass(frozen=True)
class Ratebook:
    version: str
    currency: str
    period: str
    national_key: str
    tables: Mapping[str, RateTable]

    def table_for(self, policy_type: str) -> Optional[RateTable]:
        return self.tables.get(policy_type)


def _freeze_table(name: str, raw: dict) -> RateTable:
    jurisdictions = {}
    for code, bands in raw["jurisdictions"].items():
        frozen_bands = {}
        for band, bounds in bands.items():
            low, high = int(bounds[0]), int(bounds[1])
            if low < 0 or high < low:
                raise ReferenceDataMissing(f"Invalid range for {name}/{code}/{band}")
            frozen_bands[band] = (low, high)
        jurisdictions[code.upper()] = MappingProxyType(frozen_bands)
    return RateTable(
        dimension=raw.get("dimension", "age_range"),
        default_band=raw["default_band"],
        jurisdictions=MappingProxyType(jurisdictions),
    )


def load_ratebook(path: Optional[Path] = None) -> Ratebook:
    """
    Read and freeze the ratebook.

    Raises:
        ReferenceDataMissing: If the file is absent, unreadable or malformed.
    """
    path = Path(path) if path else DEFAULT_RATEBOOK_PATH
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
        national_key = raw.get("national_key", "US").upper()
        tables = {name: _freeze_table(name, table) for name, table in raw["rates"].items()}
        for name, table in tables.items():
            if national_key not in table.jurisdictions:
                raise ReferenceDataMissing(f"Ratebook table '{name}' has no {national_key} row")
        ratebook = Ratebook(
            version=str(raw["version"]),
            currency=raw.get("currency", "USD"),
            period=raw.get("period", "year"),
            national_key=national_key,
            tables=MappingProxyType(tables),
        )
    except ReferenceDataMissing:
        raise
    except (OSError, ValueError, KeyError, TypeError, IndexError) as e:
        raise ReferenceDataMissing(f"Could not load ratebook from {path}: {e}") from e

    logger.info(f"Loaded ratebook version {ratebook.version} ({len(ratebook.tables)} policy types)")
    return ratebook


@lru_cache()
def get_ratebook() -> Ratebook:
    """Process-wide ratebook, loaded on first use (the app loads it at startup)."""
    return load_ratebook(settings.RATEBOOK_PATH or None)
