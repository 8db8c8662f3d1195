"""Base interface for step integrations."""

from __future__ import annotations

import abc
from typing import Any, ClassVar, Generic, Mapping, Type, TypeVar

from pydantic import BaseModel, ValidationError

from ..contracts import IntegrationResult

ConfigT = TypeVar("ConfigT", bound=BaseModel)


class Integration(Generic[ConfigT], metaclass=abc.ABCMeta):
    """A capability that performs one step's side effect.

    Subclasses declare ``config_model``; ``execute`` validates the raw step
    configuration against it and hands the parsed model to ``run``. Invalid
    configuration becomes a failed :class:`IntegrationResult`.
    """

    name: ClassVar[str]
    config_model: ClassVar[Type[BaseModel]]

    async def execute(self, config: Mapping[str, Any]) -> IntegrationResult:
        try:
            parsed = self.config_model.model_validate(dict(config))
        except ValidationError as exc:
            return IntegrationResult(
                success=False, error=f"Invalid {self.name} configuration: {exc}"
            )
        return await self.run(parsed)  # type: ignore[arg-type]

    @abc.abstractmethod
    async def run(self, config: ConfigT) -> IntegrationResult:
        """Perform the side effect."""
        raise NotImplementedError
