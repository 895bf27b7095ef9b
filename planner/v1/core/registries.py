from typing import Any, Generic, Protocol, TypeVar

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
        self._implementations[str(name)] = implementation

    def get(self, name: str) -> T:
        """Get an implementation by name."""
        key = str(name)
        if key not in self._implementations:
            raise KeyError(
                f"No {self.name.lower()} implementation registered with name: {key}"
            )
        return self._implementations[key]

    def list(self) -> list[str]:
        """List all registered implementation names."""
        return list(self._implementations.keys())

    def clear(self) -> None:
        """Drop all implementations (used when re-wiring collaborators)."""
        if self._frozen:
            raise RuntimeError(f"Cannot clear frozen {self.name.lower()} registry")
        self._implementations.clear()

    def freeze(self) -> None:
        """Freeze the registry to prevent further modifications."""
        self._frozen = True

    def is_frozen(self) -> bool:
        """Check if the registry is frozen."""
        return self._frozen


# Job Registry - one processor per job type
class JobProcessor(Protocol):
    """Protocol for processors that execute one job type.

    Processors may additionally define ``on_exhausted(ctx, payload, error)``,
    called once when a job settles in the dead-letter state.
    """

    async def handle(
        self,
        session: Any,  # AsyncSession
        ctx: Any,  # JobContext for the claimed job
        payload: Any,  # Validated payload variant for the job type
    ) -> Any:
        """
        Handle a claimed job.

        Args:
            session: Database session for domain reads and writes
            ctx: Job context (identity, attempt, clock, progress, enqueue)
            payload: Job-type-specific payload model

        Returns:
            JobOutcome telling the worker how to settle the job
        """
        ...


class JobRegistry(Registry[JobProcessor]):
    """Registry for background job processors, keyed by job type."""

    def __init__(self):
        super().__init__("Job")


# Global registry instance (singleton)
job_registry = JobRegistry()
