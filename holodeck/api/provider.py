from typing import Protocol, runtime_checkable

from holodeck.api.environment import Condition


@runtime_checkable
class Provider(Protocol):
    """Lifecycle contract every infrastructure backend implements."""

    @property
    def name(self) -> str: ...

    def create(self) -> None: ...

    def delete(self) -> None: ...

    def status(self) -> list[Condition]: ...

    def dry_run(self) -> None: ...
