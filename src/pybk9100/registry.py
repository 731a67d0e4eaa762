"""CardRegistry: card entries to address-mapped CardDescriptors, plus output-card lookup."""

import logging
from typing import Any, Iterator

from .config import build_settings
from .errors import ConfigError, InvalidSettingsError, UnknownCardError, UnknownCardTypeError
from .routing import make_matcher
from .types import (
    CARD_MODELS,
    FAMILY_DEFAULT_MODEL,
    READ_FUNCTION_CODE,
    READ_FUNCTION_NAME,
    CardDescriptor,
    CardFamily,
    CardModel,
    Direction,
    ModbusTable,
    WordOrder,
)

logger = logging.getLogger(__name__)


def resolve_model(card_type: str) -> CardModel:
    """
    Resolve a type tag to its model: a model name (KL3208) or a family tag
    (analog-temperature), case-insensitive. Raises UnknownCardTypeError.
    """
    key = str(card_type or "").strip().upper()
    if key in CARD_MODELS:
        return CARD_MODELS[key]
    for family in CardFamily:
        if key == family.value.upper():
            return CARD_MODELS[FAMILY_DEFAULT_MODEL[family]]
    raise UnknownCardTypeError(str(card_type))


class CardRegistry:
    """
    Ordered, address-mapped card list for one coupler.

    Each register kind has its own running address counter, so ranges of
    cards sharing a kind are contiguous in configuration order and never
    overlap. Entries that fail validation are logged, kept in ``rejected``,
    and take no address space.
    """

    def __init__(
        self,
        entries: list[dict[str, Any]],
        base_addresses: dict[ModbusTable, int] | None = None,
        word_order: WordOrder = WordOrder.STATUS_FIRST,
    ) -> None:
        self._bases = dict(base_addresses or {})
        self._counters: dict[ModbusTable, int] = {table: self._bases.get(table, 0) for table in ModbusTable}
        self._cards: list[CardDescriptor] = []
        self.rejected: list[tuple[int, dict[str, Any], ConfigError]] = []

        for slot, entry in enumerate(entries, start=1):
            try:
                card = self._build(slot, entry, word_order)
            except ConfigError as e:
                e.slot = slot
                e.entry = entry if isinstance(entry, dict) else None
                logger.warning("Card %d (%r) excluded: %s", slot, _entry_name(entry), e)
                self.rejected.append((slot, entry, e))
                continue
            self._cards.append(card)

        logger.debug(
            "CardRegistry built: %d cards, %d rejected",
            len(self._cards),
            len(self.rejected),
        )

    def _build(self, slot: int, entry: Any, word_order: WordOrder) -> CardDescriptor:
        if not isinstance(entry, dict):
            raise InvalidSettingsError(f"Card entry must be an object, got {type(entry).__name__}")
        model = resolve_model(entry.get("type", ""))

        channels = entry.get("channels", model.channels)
        if isinstance(channels, bool) or not isinstance(channels, int) or channels < 1:
            raise InvalidSettingsError(f"channels must be a positive integer, got {channels!r}")

        settings = build_settings(entry, model, channels, word_order)

        quantity = channels if model.bit_based else channels * model.words_per_channel
        start = self._counters[model.table]
        self._counters[model.table] = start + quantity

        return CardDescriptor(
            slot=slot,
            model=model,
            label=str(entry.get("label") or ""),
            filter=str(entry.get("filter") or ""),
            channels=channels,
            start=start,
            quantity=quantity,
            settings=settings,
        )

    @property
    def cards(self) -> list[CardDescriptor]:
        return list(self._cards)

    def __len__(self) -> int:
        return len(self._cards)

    def __iter__(self) -> Iterator[CardDescriptor]:
        return iter(self._cards)

    def next_address(self, table: ModbusTable) -> int:
        """First free address in a table after all registered cards."""
        return self._counters[table]

    def input_cards(self) -> list[CardDescriptor]:
        return [c for c in self._cards if c.direction == Direction.INPUT]

    def output_cards(self) -> list[CardDescriptor]:
        return [c for c in self._cards if c.direction == Direction.OUTPUT]

    def pollable_cards(self) -> list[CardDescriptor]:
        """Cards the poll loop reads: all inputs, and outputs flagged pollable."""
        return [c for c in self._cards if c.direction == Direction.INPUT or c.settings.pollable]

    def resolve_output(self, target: Any) -> CardDescriptor:
        """
        Find an output card by label, routing filter, type name
        (case-insensitive) or 0-based position among output cards.
        Raises UnknownCardError.
        """
        outputs = self.output_cards()
        if isinstance(target, bool):
            raise UnknownCardError(target)
        if isinstance(target, int):
            if 0 <= target < len(outputs):
                return outputs[target]
            raise UnknownCardError(target, f"No output card at index {target} ({len(outputs)} output cards)")

        name = str(target or "").strip()
        if not name:
            raise UnknownCardError(target)
        for card in outputs:
            if card.label and card.label == name:
                return card
        for card in outputs:
            if card.filter and (card.filter == name or make_matcher(card.filter)(name)):
                return card
        folded = name.casefold()
        for card in outputs:
            if folded in (card.model.name.casefold(), card.family.value.casefold()):
                return card
        if name.isdigit():
            return self.resolve_output(int(name))
        raise UnknownCardError(target)

    def layout(self) -> list[dict[str, Any]]:
        """Address table of every card (for display and debugging)."""
        rows = []
        for card in self._cards:
            rows.append(
                {
                    "slot": card.slot,
                    "model": card.model.name,
                    "label": card.label,
                    "family": card.family.value,
                    "direction": card.direction.value,
                    "channels": card.channels,
                    "table": card.table.value,
                    "function_used": READ_FUNCTION_NAME[card.read_table],
                    "fc": READ_FUNCTION_CODE[card.read_table],
                    "start": card.start,
                    "quantity": card.quantity,
                }
            )
        return rows


def _entry_name(entry: Any) -> str:
    if isinstance(entry, dict):
        return str(entry.get("label") or entry.get("type") or "?")
    return "?"
