from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """
    Base schema for the public API: snake_case in Python, camelCase on the wire.

    >>> class Item(CamelModel):
    ...     entity_type: str
    >>> Item(entityType="school").model_dump(by_alias=True)
    {'entityType': 'school'}
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )
