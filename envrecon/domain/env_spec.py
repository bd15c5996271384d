from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ComponentSpec(BaseModel):
    # A dag entry: the component name plus whatever config the client attaches.
    model_config = ConfigDict(extra="allow")

    name: str = Field(min_length=1)

    def to_dag_entry(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


def dag_from_specs(specs: list[ComponentSpec]) -> list[dict[str, Any]]:
    return [spec.to_dag_entry() for spec in specs]
