"""Response envelope models shared by every endpoint."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ApiResponse(BaseModel):
    """Success envelope: ``{statusCode, data, message, success}``.

    ``success`` is derived from the status code so a 4xx/5xx can never be
    reported as successful.
    """

    model_config = ConfigDict(populate_by_name=True)

    status_code: int = Field(serialization_alias="statusCode", alias="statusCode")
    data: Any = None
    message: str = "Success"

    @property
    def success(self) -> bool:
        return self.status_code < 400

    def to_content(self) -> dict:
        """Serialize for a JSONResponse body."""
        content = self.model_dump(mode="json", by_alias=True)
        content["success"] = self.success
        return content


class ApiErrorResponse(BaseModel):
    """Error envelope: ``{statusCode, message, success: false, errors}``."""

    model_config = ConfigDict(populate_by_name=True)

    status_code: int = Field(serialization_alias="statusCode", alias="statusCode")
    message: str
    errors: list = Field(default_factory=list)

    def to_content(self) -> dict:
        """Serialize for a JSONResponse body."""
        content = self.model_dump(mode="json", by_alias=True)
        content["success"] = False
        return content
