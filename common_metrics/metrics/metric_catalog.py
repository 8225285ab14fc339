"""
Metric definitions and the catalog that holds them.

Definitions are data: each metric names its item columns, the valid integer
domain of every item, whether respondents are expected to be nested in
classes, and one of a closed set of scoring rules. The built-in entries are
read from ``catalog.yaml``; an extra YAML file can be merged in through
``COMMON_METRICS_CATALOG_PATH``.
"""

import logging
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Dict, FrozenSet, List, Mapping, Optional, Tuple, Union

import yaml

from ..config import get_settings
from ..errors import CatalogError, UnknownMetricError

logger = logging.getLogger(__name__)

BUILTIN_CATALOG_PATH = Path(__file__).resolve().parent.parent / "catalog.yaml"


# ---------------------------------------------------------------------
# Scoring rules
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class SimpleSum:
    """Composite is the plain sum of the item values."""


@dataclass(frozen=True)
class RescaledSum:
    """Each item is mapped affinely from its own domain onto `target`, then summed."""

    target: Tuple[int, int]


@dataclass(frozen=True)
class ConditionalSum:
    """
    Base rule over the default items, plus `conditional_items` on rows where
    every discriminant column holds one of its allowed values.
    """

    base: Union[SimpleSum, RescaledSum]
    conditional_items: Tuple[str, ...]
    conditions: Tuple[Tuple[str, FrozenSet], ...]

    @property
    def discriminants(self) -> Tuple[str, ...]:
        return tuple(col for col, _ in self.conditions)


ScoringRule = Union[SimpleSum, RescaledSum, ConditionalSum]


# ---------------------------------------------------------------------
# Metric definition
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class MetricDefinition:
    name: str
    items: Tuple[str, ...]
    domains: Mapping[str, Tuple[int, ...]] = field(compare=False, hash=False)
    scoring: ScoringRule
    requires_cluster_id: bool = False
    auxiliary: Tuple[str, ...] = ()
    label: str = ""
    description: str = ""

    def domain(self, item: str) -> Tuple[int, ...]:
        return self.domains[item]

    @property
    def default_items(self) -> Tuple[str, ...]:
        """Items that enter every row's composite."""
        if isinstance(self.scoring, ConditionalSum):
            extra = set(self.scoring.conditional_items)
            return tuple(i for i in self.items if i not in extra)
        return self.items

    @property
    def required_columns(self) -> Tuple[str, ...]:
        return self.items + tuple(c for c in self.auxiliary if c not in self.items)

    def _key(self):
        return (self.name, self.items, tuple(sorted(self.domains.items())), self.scoring, self.requires_cluster_id, self.auxiliary)

    def __eq__(self, other):
        if not isinstance(other, MetricDefinition):
            return NotImplemented
        return self._key() == other._key()

    def __hash__(self):
        return hash(self._key())


# ---------------------------------------------------------------------
# YAML parsing
# ---------------------------------------------------------------------
def _parse_domain(name: str, raw) -> Tuple[int, ...]:
    if isinstance(raw, dict) and "values" in raw:
        values = raw["values"]
    elif isinstance(raw, (list, tuple)) and len(raw) == 2:
        low, high = int(raw[0]), int(raw[1])
        if low >= high:
            raise CatalogError(f"Domain for '{name}' must have low < high, got {raw}")
        values = range(low, high + 1)
    else:
        raise CatalogError(f"Domain for '{name}' must be [low, high] or {{values: [...]}}, got {raw!r}")
    return tuple(sorted({int(v) for v in values}))


def _parse_scoring(metric: str, raw: dict, items: Tuple[str, ...]) -> ScoringRule:
    kind = (raw or {}).get("type")
    if kind == "simple_sum":
        return SimpleSum()
    if kind == "rescaled_sum":
        target = raw.get("target")
        if not isinstance(target, (list, tuple)) or len(target) != 2:
            raise CatalogError(f"Metric '{metric}': rescaled_sum needs target: [low, high]")
        return RescaledSum(target=(int(target[0]), int(target[1])))
    if kind == "conditional_sum":
        base = _parse_scoring(metric, raw.get("base") or {"type": "simple_sum"}, items)
        if isinstance(base, ConditionalSum):
            raise CatalogError(f"Metric '{metric}': conditional_sum cannot be nested")
        conditional = tuple(raw.get("conditional_items") or ())
        unknown = [c for c in conditional if c not in items]
        if not conditional or unknown:
            raise CatalogError(f"Metric '{metric}': conditional_items must be listed items, got {list(conditional)}")
        conditions = raw.get("conditions") or {}
        if not conditions:
            raise CatalogError(f"Metric '{metric}': conditional_sum needs at least one condition")
        return ConditionalSum(
            base=base,
            conditional_items=conditional,
            conditions=tuple((str(col), frozenset(vals)) for col, vals in conditions.items()),
        )
    raise CatalogError(f"Metric '{metric}': unknown scoring type {kind!r}")


def definition_from_dict(name: str, entry: dict) -> MetricDefinition:
    """Build a MetricDefinition from one catalog entry."""
    raw_items = entry.get("items")
    if isinstance(raw_items, dict):
        domains = {str(item): _parse_domain(item, bounds) for item, bounds in raw_items.items()}
    elif isinstance(raw_items, list) and raw_items:
        if "domain" not in entry:
            raise CatalogError(f"Metric '{name}' lists items without a metric-level domain")
        shared = _parse_domain(name, entry["domain"])
        domains = {str(item): shared for item in raw_items}
    else:
        raise CatalogError(f"Metric '{name}' must define a non-empty items list or mapping")

    items = tuple(domains)
    scoring = _parse_scoring(name, entry.get("scoring") or {}, items)
    auxiliary = tuple(entry.get("auxiliary") or ())
    if isinstance(scoring, ConditionalSum):
        auxiliary = auxiliary + tuple(c for c in scoring.discriminants if c not in auxiliary)

    return MetricDefinition(
        name=name,
        items=items,
        domains=MappingProxyType(domains),
        scoring=scoring,
        requires_cluster_id=bool(entry.get("requires_cluster_id", False)),
        auxiliary=auxiliary,
        label=str(entry.get("label", name)),
        description=" ".join(str(entry.get("description", "")).split()),
    )


def load_catalog_file(path: Union[str, Path]) -> Dict[str, MetricDefinition]:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Metric catalog not found: {path}")
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    metrics = raw.get("metrics")
    if not isinstance(metrics, dict):
        raise CatalogError(f"{path} must contain a top-level 'metrics' mapping")
    return {str(name): definition_from_dict(str(name), entry or {}) for name, entry in metrics.items()}


# ---------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------
class MetricCatalog:
    """Read-only registry of metric definitions keyed by name."""

    def __init__(self, definitions: Mapping[str, MetricDefinition]):
        self._definitions = MappingProxyType(dict(definitions))

    def __contains__(self, name) -> bool:
        return name in self._definitions

    def __iter__(self):
        return iter(self._definitions.values())

    def __len__(self) -> int:
        return len(self._definitions)

    def names(self) -> List[str]:
        return list(self._definitions)

    def get(self, name: str) -> MetricDefinition:
        key = str(name).strip().lower()
        if key not in self._definitions:
            raise UnknownMetricError(name, self._definitions)
        return self._definitions[key]

    @classmethod
    def from_files(cls, *paths: Union[str, Path]) -> "MetricCatalog":
        definitions: Dict[str, MetricDefinition] = {}
        for path in paths:
            loaded = load_catalog_file(path)
            overridden = sorted(set(loaded) & set(definitions))
            if overridden:
                logger.info(f"[Catalog] {path} overrides metrics: {overridden}")
            definitions.update(loaded)
        return cls(definitions)


@lru_cache(maxsize=1)
def default_catalog() -> MetricCatalog:
    """Built-in catalog, merged with COMMON_METRICS_CATALOG_PATH when set."""
    paths: List[Union[str, Path]] = [BUILTIN_CATALOG_PATH]
    extra: Optional[str] = get_settings().catalog_path
    if extra:
        paths.append(extra)
    catalog = MetricCatalog.from_files(*paths)
    logger.debug(f"[Catalog] Loaded {len(catalog)} metrics: {catalog.names()}")
    return catalog


def get_metric(name: str) -> MetricDefinition:
    return default_catalog().get(name)


def list_metrics() -> List[str]:
    return default_catalog().names()
