import logging

from pydantic import BaseModel, ValidationError, field_validator


class SettingsSchema(BaseModel):
    log_level: str = "INFO"
    api_token: str = ""

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        level = value.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"unknown log level: {value}")
        return level


def validate_settings(data: dict) -> dict:
    try:
        return SettingsSchema(**data).model_dump()
    except ValidationError as e:
        raise ValueError(str(e))
