from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Any
from datetime import datetime


class BoostingRule(BaseModel):
    """User-defined ranking boost on a document field"""
    field: str
    values: List[Any]
    boost_factor: float = Field(1.0, gt=0, le=10)

    @field_validator('values')
    @classmethod
    def validate_values(cls, v):
        if not v:
            raise ValueError('Boosting rule needs at least one value')
        return v


class HiddenResult(BaseModel):
    result_id: str
    reason: Optional[str] = None
    hidden_at: datetime = Field(default_factory=datetime.utcnow)


class PersonalizationPreferences(BaseModel):
    preferred_categories: List[str] = []
    preferred_instructors: List[str] = []
    preferred_difficulty_levels: List[str] = []
    preferred_content_types: List[str] = []
    preferred_languages: List[str] = []
    learning_goals: List[str] = []
    interests: List[str] = []


class PersonalizationSettingsUpdate(BaseModel):
    """Explicit settings change from the user; unset fields are left alone"""
    preferred_categories: Optional[List[str]] = None
    preferred_instructors: Optional[List[str]] = None
    preferred_difficulty_levels: Optional[List[str]] = None
    preferred_content_types: Optional[List[str]] = None
    preferred_languages: Optional[List[str]] = None
    learning_goals: Optional[List[str]] = None
    interests: Optional[List[str]] = None
    boosting_rules: Optional[List[BoostingRule]] = None

    @field_validator('preferred_difficulty_levels')
    @classmethod
    def validate_difficulty(cls, v):
        if v is None:
            return v
        allowed = {"beginner", "intermediate", "advanced", "expert"}
        invalid = [level for level in v if level.lower() not in allowed]
        if invalid:
            raise ValueError(f'Unknown difficulty levels: {invalid}')
        return [level.lower() for level in v]


class LearningActivity(BaseModel):
    """Learning event feeding the personalization profile"""
    user_id: str
    organization_id: str
    activity_type: str
    category: Optional[str] = None
    difficulty: Optional[str] = None
    instructor: Optional[str] = None
    content_type: Optional[str] = None

