from pydantic import BaseModel, Field, ValidationError

class SettingsSchema(BaseModel):
    weight_unit: str = "lbs"
    default_sets: int = Field(3, ge=0)
    default_reps: int = Field(8, ge=0)
    dashboard_recent_limit: int = Field(5, ge=1)

def validate_settings(data: dict) -> SettingsSchema:
    try:
        return SettingsSchema(**data)
    except ValidationError as e:
        raise ValueError(str(e))
