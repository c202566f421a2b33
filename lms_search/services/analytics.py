"""
Analytics Aggregator
Nightly search rollups, intent classification, trends, recommendations and alerts
"""

import logging
from collections import Counter, defaultdict
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from ..cache.manager import CacheManager
from ..database.models import SearchAnalytics, SearchQueryLog
from ..models.analytics import (
    Alert, InsightsOverview, Recommendation, SearchInsights, SearchIntent, Timeframe, TopQuery
)

logger = logging.getLogger(__name__)

LEARNING_KEYWORDS = ("how to", "learn", "tutorial", "course")
RESEARCH_KEYWORDS = ("what is", "definition", "explain", "overview")
SPECIFIC_LENGTH = 50

INTENT_BUCKETS = [
    SearchIntent.LEARNING, SearchIntent.RESEARCH, SearchIntent.BROWSING, SearchIntent.SPECIFIC, SearchIntent.OTHER
]

# Percentile estimates are multiples of the mean, not measured percentiles
P95_FACTOR = 1.5
P99_FACTOR = 2.0

LOW_CTR_THRESHOLD = 0.3
ZERO_RESULT_RATIO_THRESHOLD = 0.2
SLOW_QUERY_MS = 500
CRITICAL_QUERY_MS = 1000
ERROR_RATE_ALERT_PERCENT = 5


def classify_intent(query_text: Optional[str]) -> str:
    """
    Classify a query as learning, research, specific or browsing

    Learning keywords win over research keywords, which win over specific
    signals (a quote, the word "specific", or more than 50 characters).
    Everything else is browsing.
    """
    text = query_text or ""
    lowered = text.lower()

    if any(keyword in lowered for keyword in LEARNING_KEYWORDS):
        return SearchIntent.LEARNING.value
    if any(keyword in lowered for keyword in RESEARCH_KEYWORDS):
        return SearchIntent.RESEARCH.value
    if '"' in text or "specific" in lowered or len(text) > SPECIFIC_LENGTH:
        return SearchIntent.SPECIFIC.value
    return SearchIntent.BROWSING.value


def calculate_trend(values: Sequence[float]) -> float:
    """Percent change of the mean of the last 7 points against the 7 before them"""
    if len(values) < 2:
        return 0.0

    recent = list(values[-7:])
    earlier = list(values[-14:-7])
    if not earlier:
        return 0.0

    recent_avg = sum(recent) / len(recent)
    earlier_avg = sum(earlier) / len(earlier)
    if earlier_avg == 0:
        return 100.0 if recent_avg > 0 else 0.0
    return (recent_avg - earlier_avg) / earlier_avg * 100


def _direction(trend: float, up: str, down: str) -> str:
    if trend > 0:
        return up
    if trend < 0:
        return down
    return "stable"


class AnalyticsAggregator:
    """Sole writer of daily search analytics and query intents"""

    def __init__(self, db_session: Session, cache_manager: Optional[CacheManager] = None):
        self.db = db_session
        self.cache = cache_manager

        self.cache_ttl = {
            "insights": 1800,
        }

    def classify_and_store_intent(self, query_log: SearchQueryLog) -> str:
        """Set the log's intent if it has none yet; an existing intent is never overwritten"""
        if query_log.search_intent:
            return query_log.search_intent
        query_log.search_intent = classify_intent(query_log.query_text)
        self.db.commit()
        return query_log.search_intent

    def compute_daily_metrics(self, logs: List[SearchQueryLog]) -> Dict[str, Any]:
        """Aggregate one day of query logs (with their clicks)"""
        total_queries = len(logs)
        unique_users = len({log.user_id for log in logs if log.user_id})
        queries_with_results = sum(1 for log in logs if log.has_results)
        total_clicks = sum(len(log.clicks or []) for log in logs)
        errors = sum(1 for log in logs if log.had_error)

        average_ctr = total_clicks / total_queries if total_queries else 0.0
        average_execution = (
            sum(log.execution_time_ms or 0 for log in logs) / total_queries if total_queries else 0.0
        )

        per_query: Dict[str, Dict[str, Any]] = defaultdict(lambda: {"count": 0, "clicks": 0, "positions": []})
        for log in logs:
            key = log.normalized_query or (log.query_text or "").lower().strip()
            entry = per_query[key]
            entry["count"] += 1
            entry["clicks"] += len(log.clicks or [])
            entry["positions"].extend(click.position for click in (log.clicks or []))

        ranked = sorted(per_query.items(), key=lambda item: (-item[1]["count"], item[0]))[:10]
        top_queries = [
            {
                "query": query,
                "count": stats["count"],
                "ctr": round(stats["clicks"] / stats["count"], 4),
                "avg_position": round(sum(stats["positions"]) / len(stats["positions"]), 2)
                if stats["positions"] else 0,
            }
            for query, stats in ranked
        ]

        intents = Counter(log.search_intent or SearchIntent.OTHER.value for log in logs)
        intent_distribution = {
            bucket.value: (intents.get(bucket.value, 0) / total_queries * 100) if total_queries else 0.0
            for bucket in INTENT_BUCKETS
        }

        return {
            "total_queries": total_queries,
            "unique_users": unique_users,
            "queries_with_results": queries_with_results,
            "queries_without_results": total_queries - queries_with_results,
            "total_clicks": total_clicks,
            "average_click_through_rate": average_ctr,
            "average_execution_time": average_execution,
            "top_queries": top_queries,
            "query_intent_distribution": intent_distribution,
            "performance_metrics": {
                "avg_response_time_ms": average_execution,
                "p95_response_time_ms": average_execution * P95_FACTOR,
                "p99_response_time_ms": average_execution * P99_FACTOR,
                "percentiles_estimated": True,
                "error_rate": (errors / total_queries * 100) if total_queries else 0.0,
            },
        }

    def get_daily_analytics(self, organization_id: str, day: date) -> Optional[SearchAnalytics]:
        return self.db.query(SearchAnalytics).filter(
            SearchAnalytics.organization_id == organization_id,
            SearchAnalytics.date == day,
        ).first()

    def generate_daily_analytics(self, organization_id: str, day: date) -> SearchAnalytics:
        """
        Write the rollup for one organization and day

        A day that already has a rollup is returned unchanged, so redelivered jobs
        never rewrite persisted analytics. Failures are logged and re-raised for
        redelivery.
        """
        existing = self.get_daily_analytics(organization_id, day)
        if existing is not None:
            logger.info(f"Daily analytics for {organization_id} on {day} already exist, skipping")
            return existing

        start = datetime.combine(day, time.min)
        end = start + timedelta(days=1)

        try:
            logs = self.db.query(SearchQueryLog).options(selectinload(SearchQueryLog.clicks)).filter(
                SearchQueryLog.organization_id == organization_id,
                SearchQueryLog.executed_at >= start,
                SearchQueryLog.executed_at < end,
            ).all()

            analytics = SearchAnalytics(organization_id=organization_id, date=day, **self.compute_daily_metrics(logs))
            self.db.add(analytics)
            self.db.commit()
            self.db.refresh(analytics)
        except IntegrityError:
            self.db.rollback()
            existing = self.get_daily_analytics(organization_id, day)
            if existing is None:
                raise
            return existing
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to generate daily analytics for {organization_id} on {day}: {e}")
            raise

        logger.info(f"Generated daily analytics for {organization_id} on {day}: {analytics.total_queries} queries")
        return analytics

    def get_analytics_range(self, organization_id: str, start: date, end: date) -> List[SearchAnalytics]:
        return self.db.query(SearchAnalytics).filter(
            SearchAnalytics.organization_id == organization_id,
            SearchAnalytics.date >= start,
            SearchAnalytics.date <= end,
        ).order_by(SearchAnalytics.date.asc()).all()

    def generate_recommendations(self, latest: SearchAnalytics) -> List[Recommendation]:
        recommendations = []
        ctr = latest.average_click_through_rate or 0.0
        total = latest.total_queries or 0
        without_results = latest.queries_without_results or 0
        latency = latest.average_execution_time or 0.0

        if ctr < LOW_CTR_THRESHOLD:
            recommendations.append(Recommendation(
                type="relevance", priority="high", metric=ctr,
                message="Consider improving search result relevance - CTR is below optimal",
            ))
        if total and without_results > total * ZERO_RESULT_RATIO_THRESHOLD:
            recommendations.append(Recommendation(
                type="content_coverage", priority="medium", metric=without_results / total,
                message="High number of queries with no results - consider expanding content coverage",
            ))
        if latency > SLOW_QUERY_MS:
            recommendations.append(Recommendation(
                type="performance", priority="medium", metric=latency,
                message="Search response time is slow - consider index optimization",
            ))
        return recommendations

    def generate_alerts(self, latest: SearchAnalytics) -> List[Alert]:
        alerts = []
        error_rate = (latest.performance_metrics or {}).get("error_rate", 0) or 0
        latency = latest.average_execution_time or 0.0

        if error_rate > ERROR_RATE_ALERT_PERCENT:
            alerts.append(Alert(
                type="error_rate", severity="critical", metric=error_rate,
                message="High error rate detected in search queries",
            ))
        if latency > CRITICAL_QUERY_MS:
            alerts.append(Alert(
                type="latency", severity="critical", metric=latency,
                message="Search response time is critically slow",
            ))
        return alerts

    def generate_insights(self, organization_id: str, timeframe: Timeframe,
                          today: Optional[date] = None) -> SearchInsights:
        """Summarize daily rollups over 7, 30 or 90 days"""
        timeframe = Timeframe(timeframe)
        today = today or datetime.utcnow().date()
        cache_key = f"insights_{organization_id}_{timeframe.value}_{today.isoformat()}"

        if self.cache:
            cached = self.cache.get_cached_analytics_data(cache_key)
            if cached:
                logger.debug(f"Cache HIT for insights ({organization_id}, {timeframe.value})")
                return SearchInsights.model_validate(cached)

        rows = self.get_analytics_range(organization_id, today - timedelta(days=timeframe.days), today)
        insights = SearchInsights(organization_id=organization_id, timeframe=timeframe, overview=InsightsOverview())

        if rows:
            total_queries = sum(row.total_queries or 0 for row in rows)
            without_results = sum(row.queries_without_results or 0 for row in rows)
            query_trend = calculate_trend([row.total_queries or 0 for row in rows])
            ctr_trend = calculate_trend([row.average_click_through_rate or 0.0 for row in rows])

            insights.overview = InsightsOverview(
                total_queries=total_queries,
                unique_users=sum(row.unique_users or 0 for row in rows),
                average_click_through_rate=sum(row.average_click_through_rate or 0.0 for row in rows) / len(rows),
                average_execution_time=sum(row.average_execution_time or 0.0 for row in rows) / len(rows),
                zero_result_rate=(without_results / total_queries * 100) if total_queries else 0.0,
                error_rate=sum((row.performance_metrics or {}).get("error_rate", 0) for row in rows) / len(rows),
                query_trend=query_trend,
                ctr_trend=ctr_trend,
                query_trend_direction=_direction(query_trend, "increasing", "decreasing"),
                ctr_trend_direction=_direction(ctr_trend, "improving", "declining"),
            )

            popularity: Counter = Counter()
            intents: Counter = Counter()
            for row in rows:
                for entry in row.top_queries or []:
                    popularity[entry["query"]] += entry.get("count", 0)
                for bucket, percent in (row.query_intent_distribution or {}).items():
                    intents[bucket] += percent * (row.total_queries or 0) / 100

            insights.top_queries = [TopQuery(query=q, count=c) for q, c in popularity.most_common(10)]
            insights.intent_distribution = {
                bucket.value: (intents.get(bucket.value, 0) / total_queries * 100) if total_queries else 0.0
                for bucket in INTENT_BUCKETS
            }

            latest = rows[-1]
            insights.recommendations = self.generate_recommendations(latest)
            insights.alerts = self.generate_alerts(latest)

        if self.cache:
            self.cache.cache_analytics_data(cache_key, insights.model_dump(mode="json"), self.cache_ttl["insights"])

        logger.info(
            f"Generated {timeframe.value} insights for {organization_id}: "
            f"{len(insights.recommendations)} recommendations, {len(insights.alerts)} alerts"
        )
        return insights
