from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class UploadResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    data_key: str = Field(alias="dataKey")
    url: str


class ErrorResponse(BaseModel):
    message: str
    max_limit: Optional[int] = None
