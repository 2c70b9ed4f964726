"""Schema for Report-To endpoint groups."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictInt, StrictStr


class Endpoint(BaseModel):
    """A single delivery URL inside an endpoint group."""

    model_config = ConfigDict(extra="allow")

    url: StrictStr = Field(min_length=1)


class ReportEndpoint(BaseModel):
    """A Report-To endpoint group.

    Only used to decide whether an entry is well formed; the entry itself is
    serialized as given, so unknown keys survive.
    """

    model_config = ConfigDict(extra="allow")

    group: StrictStr = Field(min_length=1)
    max_age: StrictInt = Field(ge=0)
    endpoints: list[Endpoint] = Field(min_length=1)
    include_subdomains: StrictBool = False
