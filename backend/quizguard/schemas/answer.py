from __future__ import annotations
from typing import Annotated, Literal, Union
from pydantic import BaseModel, Field

class ChoiceAnswer(BaseModel):
    kind: Literal["choice"] = "choice"
    index: int = Field(ge=0)

class TextAnswer(BaseModel):
    kind: Literal["text"] = "text"
    value: str = Field(max_length=2000)

Answer = Annotated[Union[ChoiceAnswer, TextAnswer], Field(discriminator="kind")]
