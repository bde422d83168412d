"""
moltmark.schemas — Typed request models, one per tool.

Arguments arriving from callers are validated here; anything rejected never
reaches the service.
"""

from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

__all__ = [
    "GetCertificationRequest",
    "DeclareCapabilityRequest",
    "ReportTestResultRequest",
    "VerifyAgentRequest",
    "ListVerifiedAgentsRequest",
]


def _agent_id():
    return Field(..., min_length=1, max_length=255, description="Unique identifier for the agent")


_WholePercent = Annotated[int, Field(ge=0, le=100)]
_Percent = Annotated[float, Field(ge=0, le=100)]


class _Request(BaseModel):

    @field_validator("*", mode="after")
    @classmethod
    def no_null_bytes(cls, v):
        if isinstance(v, str) and "\x00" in v:
            raise ValueError("Null bytes not allowed")
        return v


class GetCertificationRequest(_Request):
    agent_id: str = _agent_id()


class DeclareCapabilityRequest(_Request):
    agent_id: str = _agent_id()
    capability_name: str = Field(..., min_length=1, max_length=255,
                                 description="Name of the capability to declare")
    description: str = Field(..., description="Description of what this capability does")


class ReportTestResultRequest(_Request):
    agent_id: str = _agent_id()
    capability: str = Field(..., min_length=1, max_length=255,
                            description="Name of the capability being tested")
    result: Literal["pass", "fail"] = Field(..., description="Test outcome")
    evidence: str = Field("", description="Description or proof of the test execution and result")


class VerifyAgentRequest(_Request):
    agent_id: str = _agent_id()
    # int first so a whole-number threshold is echoed back as sent
    min_trust_score: Union[_WholePercent, _Percent] = Field(
        ..., description="Minimum trust score required (0-100)")


class ListVerifiedAgentsRequest(_Request):
    capability_filter: Optional[str] = Field(
        None, max_length=255,
        description="Optional filter to find agents with specific capabilities",
    )
