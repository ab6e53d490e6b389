from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """
    Base for API payloads: snake_case in Python, camelCase on the wire.

    Either spelling is accepted on input.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def stringify_id(value) -> str | None:
    return str(value) if value is not None else None
