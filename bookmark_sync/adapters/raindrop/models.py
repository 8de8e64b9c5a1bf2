"""Pydantic models for the Raindrop.io REST API."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator


def _ref_id(value: Any) -> Any:
    """Unwrap Raindrop's ``{"$id": n}`` reference objects."""
    if isinstance(value, dict):
        return value.get("$id")
    return value


class RaindropCollection(BaseModel):
    """Raindrop collection model."""

    id: int = Field(alias="_id")
    title: str = ""
    parent_id: int | None = Field(default=None, alias="parent")
    count: int = 0

    model_config = {"populate_by_name": True, "extra": "ignore"}

    @field_validator("parent_id", mode="before")
    @classmethod
    def _unwrap_parent(cls, value: Any) -> Any:
        return _ref_id(value)


class Raindrop(BaseModel):
    """Raindrop bookmark model."""

    id: int = Field(alias="_id")
    link: str = ""
    title: str = ""
    collection_id: int | None = Field(default=None, alias="collection")
    last_update: str | None = Field(default=None, alias="lastUpdate")

    model_config = {"populate_by_name": True, "extra": "ignore"}

    @field_validator("collection_id", mode="before")
    @classmethod
    def _unwrap_collection(cls, value: Any) -> Any:
        return _ref_id(value)


class RaindropUser(BaseModel):
    id: int | None = Field(default=None, alias="_id")
    full_name: str = Field(default="", alias="fullName")
    email: str | None = None

    model_config = {"populate_by_name": True, "extra": "ignore"}


class CreateRaindropRequest(BaseModel):
    """Request to create a new raindrop."""

    link: str
    title: str | None = None
    collection_id: int | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"link": self.link}
        if self.title is not None:
            payload["title"] = self.title
        if self.collection_id is not None:
            payload["collection"] = {"$id": self.collection_id}
        return payload
