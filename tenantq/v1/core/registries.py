from dataclasses import dataclass
from typing import Generic, TypeVar

# Base registry implementation
T = TypeVar("T")


class Registry(Generic[T]):
    """Generic registry for pluggable implementations."""

    def __init__(self, name: str):
        self.name = name
        self._implementations: dict[str, T] = {}
        self._frozen = False

    def register(self, name: str, implementation: T) -> None:
        """Register an implementation with a given name."""
        if self._frozen:
            raise RuntimeError(
                f"Cannot register '{name}' in {self.name.lower()} registry: "
                "registry is frozen in production mode"
            )
        self._implementations[name] = implementation

    def get(self, name: str) -> T:
        """Get an implementation by name."""
        if name not in self._implementations:
            raise KeyError(
                f"No {self.name.lower()} implementation registered with name: {name}"
            )
        return self._implementations[name]

    def list(self) -> list[str]:
        """List all registered implementation names."""
        return list(self._implementations.keys())

    def __contains__(self, name: str) -> bool:
        return name in self._implementations

    def freeze(self) -> None:
        """Freeze the registry to prevent further modifications."""
        self._frozen = True

    def is_frozen(self) -> bool:
        """Check if the registry is frozen."""
        return self._frozen


@dataclass(frozen=True)
class JobTypeConfig:
    """
    Per-job-type knobs for the batch engine.

    ``None`` for batch_size, batch_delay_ms or seconds_per_item means "use
    the queue-wide setting".
    """

    name: str
    display_name: str
    item_noun: str = "items"
    progress_verb: str = "Processing"
    success_verb: str = "processed"
    batch_size: int | None = None
    batch_delay_ms: int | None = None
    seconds_per_item: float | None = None
    max_attempts: int = 1

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got: {self.max_attempts}")
        if self.batch_size is not None and self.batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got: {self.batch_size}")


class JobTypeRegistry(Registry[JobTypeConfig]):
    """Registry for batch job types (seo, aiEnhance, collectionSeo, ...)."""

    def __init__(self):
        super().__init__("JobType")

    def add(self, config: JobTypeConfig) -> None:
        self.register(config.name, config)


# Global registry instance
job_type_registry = JobTypeRegistry()
