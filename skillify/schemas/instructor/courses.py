import decimal
import os
from dataclasses import dataclass
from typing import Optional

from pydantic import BaseModel, Field, field_validator

TWO_PLACES = decimal.Decimal("0.01")


def to_price(value) -> decimal.Decimal:
    return decimal.Decimal(str(value)).quantize(TWO_PLACES, rounding=decimal.ROUND_HALF_UP)


class CreateCourse(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1)
    price: decimal.Decimal = Field(default=decimal.Decimal("0.00"), ge=0)
    upi_id: Optional[str] = Field(default=None, alias="upiId")

    model_config = {"populate_by_name": True}

    @field_validator("title", "description")
    @classmethod
    def strip_text(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @field_validator("price")
    @classmethod
    def two_places(cls, value: decimal.Decimal) -> decimal.Decimal:
        return to_price(value)


class UpdateCourse(BaseModel):
    title: Optional[str] = Field(default=None, max_length=200)
    description: Optional[str] = None
    price: Optional[decimal.Decimal] = Field(default=None, ge=0)
    upi_id: Optional[str] = Field(default=None, alias="upiId")

    model_config = {"populate_by_name": True}

    @field_validator("title", "description")
    @classmethod
    def strip_text(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip() or None

    @field_validator("price")
    @classmethod
    def two_places(cls, value: Optional[decimal.Decimal]) -> Optional[decimal.Decimal]:
        return None if value is None else to_price(value)


@dataclass
class MediaFile:
    """An uploaded file already read into memory."""

    filename: str
    content: bytes
    content_type: str = "application/octet-stream"

    @property
    def title(self) -> str:
        return os.path.splitext(self.filename)[0] or self.filename

    @property
    def is_image(self) -> bool:
        return self.content_type.startswith("image/")

    @property
    def is_video(self) -> bool:
        return self.content_type.startswith("video/")

    @classmethod
    async def from_upload(cls, file) -> "MediaFile":
        return cls(
            filename=file.filename or "upload",
            content=await file.read(),
            content_type=file.content_type or "application/octet-stream",
        )
