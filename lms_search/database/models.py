import uuid
from datetime import datetime

from sqlalchemy import (
    Column, Integer, String, DateTime, Date, ForeignKey, JSON, Text, Float, Boolean, Index, UniqueConstraint
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def generate_uuid() -> str:
    return str(uuid.uuid4())


class SearchIndex(Base):
    __tablename__ = "search_indices"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    organization_id = Column(String(36), nullable=False)
    index_type = Column(String(50), nullable=False)

    # Physical index in the backend and the alias readers query
    index_name = Column(String(255), nullable=False, unique=True)
    alias_name = Column(String(255), nullable=False)

    mapping = Column(JSON, default=dict)
    configuration = Column(JSON, default=dict)

    is_active = Column(Boolean, default=True, nullable=False)
    is_realtime_sync = Column(Boolean, default=False, nullable=False)

    # Always taken from the backend count after a write
    document_count = Column(Integer, default=0)
    last_synced_at = Column(DateTime)
    sync_stats = Column(JSON, default=dict)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    queries = relationship("SearchQueryLog", back_populates="search_index")


class SearchQueryLog(Base):
    __tablename__ = "search_queries"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36))
    organization_id = Column(String(36), nullable=False)
    search_index_id = Column(String(36), ForeignKey("search_indices.id", ondelete="SET NULL"))

    query_text = Column(Text, nullable=False)
    normalized_query = Column(Text, nullable=False)
    filters = Column(JSON, default=dict)
    facets = Column(JSON, default=dict)
    sorting = Column(JSON, default=list)

    results_count = Column(Integer, default=0)
    has_results = Column(Boolean, default=False)
    execution_time_ms = Column(Integer, default=0)
    had_error = Column(Boolean, default=False)
    result_metrics = Column(JSON, default=dict)

    # Mutated after creation only by the analytics path
    search_intent = Column(String(50))
    click_through_count = Column(Integer, default=0)

    executed_at = Column(DateTime, default=datetime.utcnow)

    search_index = relationship("SearchIndex", back_populates="queries")
    clicks = relationship("SearchResultClick", back_populates="search_query", cascade="all, delete-orphan")


class SearchResultClick(Base):
    __tablename__ = "search_result_clicks"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    search_query_id = Column(String(36), ForeignKey("search_queries.id", ondelete="CASCADE"), nullable=False)

    result_id = Column(String(255), nullable=False)
    result_type = Column(String(50), nullable=False)
    result_title = Column(String(500))
    position = Column(Integer, nullable=False)
    relevance_score = Column(Float, default=0.0)
    time_spent_seconds = Column(Integer)
    converted = Column(Boolean, default=False)

    clicked_at = Column(DateTime, default=datetime.utcnow)

    search_query = relationship("SearchQueryLog", back_populates="clicks")


class SearchSuggestion(Base):
    __tablename__ = "search_suggestions"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    organization_id = Column(String(36), nullable=False)
    suggestion_type = Column(String(50), nullable=False)

    text = Column(String(500), nullable=False)
    display_text = Column(String(500))

    popularity = Column(Integer, default=0)
    click_through_rate = Column(Float, default=0.0)

    is_active = Column(Boolean, default=True)
    is_promoted = Column(Boolean, default=False)
    display_order = Column(Integer, default=0)

    suggestion_metadata = Column("metadata", JSON, default=dict)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class SearchPersonalization(Base):
    __tablename__ = "search_personalizations"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), nullable=False, unique=True)
    organization_id = Column(String(36), nullable=False)

    preferences = Column(JSON, default=dict)
    search_behavior = Column(JSON, default=dict)
    boosting_rules = Column(JSON, default=list)
    hidden_results = Column(JSON, default=list)

    profile_completeness = Column(Float, default=0.0)
    last_updated = Column(DateTime, default=datetime.utcnow)
    created_at = Column(DateTime, default=datetime.utcnow)


class SearchAnalytics(Base):
    __tablename__ = "search_analytics"
    __table_args__ = (
        UniqueConstraint("organization_id", "date", name="uq_search_analytics_org_date"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    organization_id = Column(String(36), nullable=False)
    date = Column(Date, nullable=False)

    total_queries = Column(Integer, default=0)
    unique_users = Column(Integer, default=0)
    queries_with_results = Column(Integer, default=0)
    queries_without_results = Column(Integer, default=0)
    total_clicks = Column(Integer, default=0)
    average_click_through_rate = Column(Float, default=0.0)
    average_execution_time = Column(Float, default=0.0)

    top_queries = Column(JSON, default=list)
    query_intent_distribution = Column(JSON, default=dict)
    performance_metrics = Column(JSON, default=dict)

    created_at = Column(DateTime, default=datetime.utcnow)


# One active physical index per organization and index type
Index(
    'uq_search_indices_active_org_type',
    SearchIndex.organization_id, SearchIndex.index_type,
    unique=True,
    postgresql_where=SearchIndex.is_active.is_(True),
    sqlite_where=SearchIndex.is_active.is_(True),
)
Index('idx_search_indices_alias', SearchIndex.alias_name)
Index('idx_search_queries_org_executed', SearchQueryLog.organization_id, SearchQueryLog.executed_at)
Index('idx_search_queries_normalized', SearchQueryLog.organization_id, SearchQueryLog.normalized_query)
Index('idx_search_clicks_query', SearchResultClick.search_query_id)
Index('idx_search_suggestions_org_type_text', SearchSuggestion.organization_id, SearchSuggestion.suggestion_type, SearchSuggestion.text)
Index('idx_search_personalizations_org', SearchPersonalization.organization_id)
