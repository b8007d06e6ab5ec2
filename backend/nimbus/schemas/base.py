"""Shared schema base: snake_case attributes in Python, camelCase keys on the wire."""
from pydantic import BaseModel
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Accepts either spelling on input; FastAPI serializes by alias."""
    model_config = {
        "alias_generator": to_camel,
        "populate_by_name": True,
    }

    def to_wire(self) -> dict:
        """JSON-ready camelCase dict, for routes that build their own JSONResponse."""
        return self.model_dump(mode="json", by_alias=True)
