from typing import Literal

from pydantic import BaseModel, Field


class CreateTicket(BaseModel):
    requested_role: str = Field(alias="requestedRole", min_length=1)

    model_config = {"populate_by_name": True}


class ResolveTicket(BaseModel):
    action: Literal["approved", "rejected"]
