from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from autoapply.core.config import settings
from autoapply.libs.matching.exceptions import ProfileValidationError


class CandidatePreferences(BaseModel):
    """
    Auto-apply preferences for one candidate.

    Defaults come from settings and are applied when the model is built, so
    the gate never has to fall back on missing values.
    """

    model_config = ConfigDict(frozen=True)

    candidate_id: str
    auto_apply_enabled: bool = Field(default_factory=lambda: settings.default_auto_apply_enabled)
    auto_apply_min_score: int = Field(
        default_factory=lambda: settings.default_auto_apply_min_score, ge=0, le=100
    )
    max_applications_per_day: int = Field(
        default_factory=lambda: settings.default_max_applications_per_day, ge=0
    )

    @classmethod
    def from_record(cls, candidate_id: str, record: Optional[Dict[str, Any]]) -> "CandidatePreferences":
        """
        Build preferences from a store row, or defaults when there is none.

        Null columns fall back to defaults. Any other invalid value raises
        ProfileValidationError.
        """
        values = {k: v for k, v in (record or {}).items() if v is not None and k != "candidate_id"}
        try:
            return cls(candidate_id=str(candidate_id), **values)
        except ValidationError as e:
            raise ProfileValidationError(
                f"Invalid preferences for candidate {candidate_id}: {e.errors()[0]['msg']}"
            ) from e


__all__ = ["CandidatePreferences"]
