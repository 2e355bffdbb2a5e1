"""The backing database binding: a tagged variant over the two modes.

``created`` means the stack owns the instance and the credential; the host
is only known once the instance exists. ``imported`` means an external
instance is authoritative and its connection facts were read up front.
"""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field

from stackpilot.models.state import ResourceMode


class CreatedDatabase(BaseModel):
    model_config = ConfigDict(frozen=True)

    mode: Literal[ResourceMode.CREATED] = ResourceMode.CREATED
    identifier: str
    username: str
    password: str = Field(repr=False)
    dbname: str
    port: int = 5432
    credential_generated: bool = False


class ImportedDatabase(BaseModel):
    model_config = ConfigDict(frozen=True)

    mode: Literal[ResourceMode.IMPORTED] = ResourceMode.IMPORTED
    identifier: str
    username: str
    password: str = Field(repr=False)
    dbname: str
    host: str
    port: int = 5432


DatabaseBinding = Annotated[
    CreatedDatabase | ImportedDatabase, Field(discriminator="mode")
]
