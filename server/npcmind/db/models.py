from pydantic import BaseModel, Field


class ControlDamageIn(BaseModel):
    entity_id: str = Field(min_length=1, max_length=64)
    amount: float = Field(gt=0.0, le=1000.0)


class ControlEntityIn(BaseModel):
    entity_id: str = Field(min_length=1, max_length=64)


class ControlSayIn(BaseModel):
    target_id: str = Field(min_length=1, max_length=64)
    text: str = Field(min_length=1, max_length=500)


class ControlSpeedIn(BaseModel):
    speed: float = Field(ge=0.1, le=5.0)
