from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class RunMappingRequest(BaseModel):
    """Every field is optional here so missing ones produce the uniform 400 body."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    user_id: Optional[str] = Field(default=None, alias="userId")
    instance_url: Optional[str] = Field(default=None, alias="instanceUrl")
    form_version_id: Optional[str] = Field(default=None, alias="formVersionId")
    form_data: Optional[Dict[str, Any]] = Field(default=None, alias="formData")
    nodes: Optional[List[Dict[str, Any]]] = None
    submission_id: Optional[str] = Field(default=None, alias="submissionId")


class ValidateLogicRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    expression: str = ""
    condition_count: int = Field(default=0, ge=0, alias="conditionCount")


class ValidateLogicResponse(BaseModel):
    valid: bool
    errors: List[str] = Field(default_factory=list)
