"""Slot catalog and alias normalization.

Only the explicit alias and expansion tables fold names together. Two slots
that merely share a prefix ("사이드배너1", "사이드배너2") stay separate, each
with its own capacity.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Iterator

from pydantic import ValidationError

from adslots.schema import AliasExpansion, CatalogConfig, SlotDefinition

logger = logging.getLogger(__name__)


class CatalogConfigError(ValueError):
    pass


DEFAULT_CATALOG = CatalogConfig(
    version="2024.1",
    slots=[
        SlotDefinition(name="메인배너", capacity=8),
        SlotDefinition(name="사이드배너1", aliases=["사이드배너 1"], capacity=4),
        SlotDefinition(name="사이드배너2", aliases=["사이드배너 2"], capacity=4),
        SlotDefinition(name="사이드배너3", aliases=["사이드배너 3"], capacity=4),
        SlotDefinition(name="뉴스레터배너", aliases=["뉴스레터", "뉴스레터 배너"], capacity=3),
        SlotDefinition(name="eDM", aliases=["eDM 전체 이미지"], capacity=1),
    ],
    expansions=[
        AliasExpansion(label="사이드배너", slots=["사이드배너1", "사이드배너2", "사이드배너3"]),
    ],
)


class SlotCatalog:
    def __init__(
        self,
        slots: Iterable[SlotDefinition],
        expansions: Iterable[AliasExpansion] = (),
        version: str = "1",
    ):
        self.version = version
        self._slots: dict[str, SlotDefinition] = {}
        self._aliases: dict[str, str] = {}
        self._expansions: dict[str, tuple[str, ...]] = {}

        for slot in slots:
            if slot.name in self._slots:
                raise CatalogConfigError(f"Duplicate canonical slot name: {slot.name!r}.")
            self._slots[slot.name] = slot
            if slot.capacity == 0:
                logger.warning("Slot %s is configured with capacity 0 and will always be full", slot.name)

        for slot in self._slots.values():
            for alias in slot.aliases:
                alias = alias.strip()
                if not alias or alias == slot.name:
                    continue
                if alias in self._slots:
                    raise CatalogConfigError(f"Alias {alias!r} of {slot.name!r} is itself a canonical slot name.")
                owner = self._aliases.get(alias)
                if owner is not None and owner != slot.name:
                    raise CatalogConfigError(f"Alias {alias!r} is claimed by both {owner!r} and {slot.name!r}.")
                self._aliases[alias] = slot.name

        for expansion in expansions:
            label = expansion.label
            if label in self._slots or label in self._aliases or label in self._expansions:
                raise CatalogConfigError(f"Expansion label {label!r} collides with another slot name or alias.")
            unknown = [name for name in expansion.slots if name not in self._slots]
            if unknown:
                raise CatalogConfigError(f"Expansion {label!r} targets unknown slots: {', '.join(unknown)}.")
            self._expansions[label] = tuple(dict.fromkeys(expansion.slots))

    @classmethod
    def from_config(cls, config: CatalogConfig) -> "SlotCatalog":
        return cls(config.slots, config.expansions, version=config.version)

    def normalize(self, raw_name: str | None) -> frozenset[str]:
        """Return the canonical slots a recorded name counts against (empty if unknown)."""
        name = (raw_name or "").strip()
        if name in self._slots:
            return frozenset((name,))
        if name in self._aliases:
            return frozenset((self._aliases[name],))
        if name in self._expansions:
            return frozenset(self._expansions[name])
        return frozenset()

    def recorded_names(self, canonical: str) -> set[str]:
        """Every raw name whose bookings contribute occupancy to ``canonical``."""
        if canonical not in self._slots:
            return set()
        names = {canonical}
        names.update(alias for alias, owner in self._aliases.items() if owner == canonical)
        names.update(label for label, targets in self._expansions.items() if canonical in targets)
        return names

    def get(self, name: str) -> SlotDefinition | None:
        return self._slots.get(name)

    def capacity(self, name: str) -> int:
        slot = self._slots.get(name)
        if slot is None:
            raise KeyError(name)
        return slot.capacity

    def ordered(self, names: Iterable[str]) -> list[str]:
        wanted = set(names)
        return [name for name in self._slots if name in wanted]

    @property
    def names(self) -> list[str]:
        return list(self._slots)

    def to_config(self) -> CatalogConfig:
        return CatalogConfig(
            version=self.version,
            slots=list(self._slots.values()),
            expansions=[AliasExpansion(label=label, slots=list(targets)) for label, targets in self._expansions.items()],
        )

    def __contains__(self, name: object) -> bool:
        return name in self._slots

    def __iter__(self) -> Iterator[SlotDefinition]:
        return iter(self._slots.values())

    def __len__(self) -> int:
        return len(self._slots)


def load_catalog(path: str | Path | None = None) -> SlotCatalog:
    """Build the catalog from a JSON config file, or the built-in default when no path is given.

    Called per request by the store-backed flows so edits to the file are
    picked up without a restart.
    """
    if path is None:
        return SlotCatalog.from_config(DEFAULT_CATALOG)
    try:
        config = CatalogConfig.model_validate_json(Path(path).read_text(encoding="utf-8"))
    except ValidationError as exc:
        raise CatalogConfigError(f"Invalid slot catalog file {path}: {exc}") from exc
    return SlotCatalog.from_config(config)
