"""Shared pydantic configuration for record models"""
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class RecordModel(BaseModel):
    """
    Base for every persisted record.

    Attributes are snake_case in Python; the serialized form (by_alias=True)
    is camelCase, which is what the data gateway and the HTTP API speak.
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_record(self) -> dict:
        """Serialize for the data gateway (camelCase, unset optionals dropped)"""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")
