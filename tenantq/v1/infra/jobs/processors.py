"""
Item processing strategies for the batch engine.

A job carries one processor. ``SinglePhaseProcessor`` wraps a function that
does all the work for an item; ``TwoPhaseProcessor`` wraps a
generate/apply pair and only commits (apply) when generation produced
something worth applying.

Processing functions may be plain or async, and may return an
``ItemOutcome``, a mapping shaped like ``{"success", "skipped", "reason",
"data"}``, or ``None`` (treated as success). Raising ``RestrictionError``
or ``JobError`` stops the whole job; any other exception only fails the
item.
"""

import inspect
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol


class ItemResult(str, Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class ItemOutcome:
    """What happened to one item."""

    result: ItemResult
    data: Any = None
    reason: str | None = None

    @classmethod
    def success(cls, data: Any = None) -> "ItemOutcome":
        return cls(ItemResult.SUCCESS, data=data)

    @classmethod
    def skipped(cls, reason: str | None = None) -> "ItemOutcome":
        return cls(ItemResult.SKIPPED, reason=reason)

    @classmethod
    def failed(cls, reason: str | None = None) -> "ItemOutcome":
        return cls(ItemResult.FAILED, reason=reason)

    @classmethod
    def from_result(cls, value: Any) -> "ItemOutcome":
        """Normalize whatever a processing function returned."""
        if isinstance(value, ItemOutcome):
            return value
        if value is None:
            return cls.success()
        if isinstance(value, Mapping):
            if value.get("skipped"):
                return cls.skipped(value.get("reason"))
            if value.get("success") is False or value.get("failed"):
                return cls.failed(value.get("error") or value.get("reason"))
            return cls.success(value.get("data"))
        return cls.success(value)


ProcessFn = Callable[[Any], Any]
ApplyFn = Callable[[Any, Any], Any]


async def _call(fn: Callable[..., Any], *args: Any) -> Any:
    result = fn(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


class ItemProcessor(Protocol):
    """Strategy the queue calls once per item."""

    async def process(self, item: Any) -> ItemOutcome:
        ...


class SinglePhaseProcessor:
    """One function does everything for an item."""

    def __init__(self, process_fn: ProcessFn):
        self.process_fn = process_fn

    async def process(self, item: Any) -> ItemOutcome:
        return ItemOutcome.from_result(await _call(self.process_fn, item))


class TwoPhaseProcessor:
    """Generate, decide, then apply.

    ``apply(item, data)`` runs only when ``generate(item)`` neither skipped
    nor failed, and receives the generated data.
    """

    def __init__(self, generate_fn: ProcessFn, apply_fn: ApplyFn):
        self.generate_fn = generate_fn
        self.apply_fn = apply_fn

    async def process(self, item: Any) -> ItemOutcome:
        generated = ItemOutcome.from_result(await _call(self.generate_fn, item))
        if generated.result is not ItemResult.SUCCESS:
            return generated

        applied = await _call(self.apply_fn, item, generated.data)
        if isinstance(applied, (ItemOutcome, Mapping)):
            return ItemOutcome.from_result(applied)
        return ItemOutcome.success(generated.data)


def as_processor(
    processor: ItemProcessor | ProcessFn | tuple[ProcessFn, ApplyFn],
) -> ItemProcessor:
    """Accept a strategy object, a single function or a (generate, apply) pair."""
    if hasattr(processor, "process") and callable(processor.process):
        return processor
    if isinstance(processor, tuple):
        if len(processor) != 2:
            raise ValueError("Two-phase processors take exactly (generate, apply)")
        return TwoPhaseProcessor(*processor)
    if callable(processor):
        return SinglePhaseProcessor(processor)
    raise TypeError(f"Unsupported processor: {processor!r}")


def describe_item(item: Any) -> str:
    """Short label for reason lists: title, name or identifier."""
    if isinstance(item, Mapping):
        for key in ("title", "name", "id", "product_id", "collection_id"):
            if item.get(key):
                return str(item[key])
    return str(item)
