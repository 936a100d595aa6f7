from typing import Any, Generic, Protocol, TypeVar

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

    def has(self, name: str) -> bool:
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


# Job Registry - background processing handlers
class JobHandler(Protocol):
    """Protocol for job handlers.

    A handler is constructed for a single job and executed once:

        handler = handler_cls(job, context)
        result = await handler.execute()

    Raising from ``execute`` routes the job through the retry policy.
    """

    def __init__(self, job: Any, context: Any) -> None: ...

    async def execute(self) -> dict[str, Any] | None:
        """Run the job and return an optional result to store on it."""
        ...


class JobRegistry(Registry[type[JobHandler]]):
    """Registry mapping job-type strings to handler classes."""

    def __init__(self):
        super().__init__("Job")


# Cron strategy registry - what a recurring schedule does when it fires
class CronStrategy(Protocol):
    """Protocol for cron strategies keyed by a schedule's ``job_type``."""

    def validate(self, configuration: dict[str, Any]) -> None:
        """Raise StrategyConfigurationError when the configuration is unusable."""
        ...

    async def run(self, cron_job: Any, context: Any) -> dict[str, Any]:
        """Execute one occurrence of the schedule."""
        ...


class StrategyRegistry(Registry[CronStrategy]):
    """Registry for cron strategies (webhook, email, database_query, ...)."""

    def __init__(self):
        super().__init__("Strategy")
