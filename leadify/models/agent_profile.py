from typing import Any, Dict, Mapping, Optional
from pydantic import Field, ValidationError
from leadify.models.base import MongoBaseModel
from leadify.models.bant import BantField
from leadify.models.scoring_config import ConfigInvalid, ScoringConfig, default_scoring_config


class AgentProfile(MongoBaseModel):
    """
    Externally managed agent configuration, re-read on every turn.
    Custom BANT questions override the built-in wording per field.
    """
    agent_id: str
    organization_id: Optional[str] = None
    display_name: Optional[str] = None
    scoring_config: ScoringConfig = Field(default_factory=default_scoring_config)
    bant_questions: Dict[BantField, str] = Field(default_factory=dict)
    greeting: Optional[str] = None


def load_agent_profile(data: Mapping[str, Any] | AgentProfile) -> AgentProfile:
    """
    Validate a stored agent profile, scoring config included.

    Raises:
        ConfigInvalid: If the profile or its scoring config is invalid
    """
    if isinstance(data, AgentProfile):
        data = data.model_dump(by_alias=True)
    try:
        return AgentProfile.model_validate(data)
    except ValidationError as e:
        errors = [err["msg"] for err in e.errors()]
        raise ConfigInvalid(f"Invalid agent profile: {'; '.join(errors)}", errors) from e
