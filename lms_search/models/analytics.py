"""
Search analytics models
"""

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel


class SearchIntent(str, Enum):
    LEARNING = "learning"
    RESEARCH = "research"
    SPECIFIC = "specific"
    BROWSING = "browsing"
    OTHER = "other"


class Timeframe(str, Enum):
    WEEK = "7d"
    MONTH = "30d"
    QUARTER = "90d"

    @property
    def days(self) -> int:
        return int(self.value[:-1])


class TopQuery(BaseModel):
    query: str
    count: int



class Recommendation(BaseModel):
    type: str
    priority: str
    message: str
    metric: Optional[float] = None


class Alert(BaseModel):
    type: str
    severity: str
    message: str
    metric: Optional[float] = None


class InsightsOverview(BaseModel):
    total_queries: int = 0
    unique_users: int = 0
    average_click_through_rate: float = 0.0
    average_execution_time: float = 0.0
    zero_result_rate: float = 0.0
    error_rate: float = 0.0
    query_trend: float = 0.0
    ctr_trend: float = 0.0
    query_trend_direction: str = "stable"
    ctr_trend_direction: str = "stable"


class SearchInsights(BaseModel):
    organization_id: str
    timeframe: Timeframe
    overview: InsightsOverview
    top_queries: List[TopQuery] = []
    intent_distribution: Dict[str, float] = {}
    recommendations: List[Recommendation] = []
    alerts: List[Alert] = []
