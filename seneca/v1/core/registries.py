from typing import Generic, Protocol, TypeVar

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
                "registry is frozen"
            )
        self._implementations[name] = implementation

    def get(self, name: str) -> T:
        """Get an implementation by name."""
        if name not in self._implementations:
            raise KeyError(
                f"No {self.name.lower()} implementation registered with name: {name}"
            )
        return self._implementations[name]

    def __contains__(self, name: str) -> bool:
        return name in self._implementations

    def list(self) -> list[str]:
        """List all registered implementation names."""
        return list(self._implementations.keys())

    def freeze(self) -> None:
        """Freeze the registry to prevent further modifications."""
        self._frozen = True

    def is_frozen(self) -> bool:
        """Check if the registry is frozen."""
        return self._frozen


# Processor Registry - enrichment entry points keyed by job type
class MemoryProcessor(Protocol):
    """
    Protocol for the enrichment collaborator invoked once per job.

    Delivery is at-least-once: a timed out or reclaimed job runs again, so
    implementations must be safe to call repeatedly for the same memory.
    """

    async def process(self, memory_id: str) -> None:
        """Enrich a memory; raise on any failure."""
        ...


class ProcessorRegistry(Registry[MemoryProcessor]):
    """Registry for job processors (process_memory, ...)."""

    def __init__(self):
        super().__init__("Processor")
