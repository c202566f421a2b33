"""
Search backend and indexing settings
"""
import os


class SearchConfig:
    """Configuration class for search, indexing and reindex settings"""

    ELASTICSEARCH_URL = os.getenv("ELASTICSEARCH_URL", "http://localhost:9200")
    ELASTICSEARCH_USERNAME = os.getenv("ELASTICSEARCH_USERNAME")
    ELASTICSEARCH_PASSWORD = os.getenv("ELASTICSEARCH_PASSWORD")

    # Read path is bounded by this timeout (seconds)
    SEARCH_REQUEST_TIMEOUT = float(os.getenv("SEARCH_REQUEST_TIMEOUT", "10"))

    INDEXING_BATCH_SIZE = int(os.getenv("INDEXING_BATCH_SIZE", "100"))
    MAX_PAGE_SIZE = 100
    DEFAULT_PAGE_SIZE = int(os.getenv("SEARCH_DEFAULT_PAGE_SIZE", "20"))
    FACET_BUCKET_SIZE = 50
    MAX_DOCUMENT_WEIGHT = 15
    MAX_USER_WEIGHT = 10

    # Reindex monitoring (seconds)
    REINDEX_POLL_INTERVAL = float(os.getenv("REINDEX_POLL_INTERVAL", "5"))
    REINDEX_MAX_WAIT = float(os.getenv("REINDEX_MAX_WAIT", "1800"))

    AUTOCOMPLETE_LIMIT = int(os.getenv("AUTOCOMPLETE_LIMIT", "10"))
    COMPLETION_SIZE = 5

    # Job queue delivery
    JOB_MAX_ATTEMPTS = int(os.getenv("JOB_MAX_ATTEMPTS", "3"))
    JOB_POLL_TIMEOUT = int(os.getenv("JOB_POLL_TIMEOUT", "5"))
    JOB_RESULT_TTL = int(os.getenv("JOB_RESULT_TTL", "86400"))

    # Periodic jobs (cron fields, evaluated in SCHEDULE_TIMEZONE)
    SCHEDULE_TIMEZONE = os.getenv("SCHEDULE_TIMEZONE", "UTC")
    FULL_SYNC_MINUTE = int(os.getenv("FULL_SYNC_MINUTE", "0"))
    DAILY_ANALYTICS_HOUR = int(os.getenv("DAILY_ANALYTICS_HOUR", "1"))
    INDEX_OPTIMIZATION_HOUR = int(os.getenv("INDEX_OPTIMIZATION_HOUR", "2"))

    HIGHLIGHT_FIELDS = ["title", "description", "content"]
    HIGHLIGHT_PRE_TAG = "<mark>"
    HIGHLIGHT_POST_TAG = "</mark>"
    HIGHLIGHT_FRAGMENT_SIZE = 150
    HIGHLIGHT_FRAGMENTS = 3

    @classmethod
    def alias_name(cls, organization_id: str, index_type: str) -> str:
        """Stable alias readers query for an organization and index type"""
        return f"{organization_id}-{index_type}"

    @classmethod
    def physical_index_name(cls, organization_id: str, index_type: str, suffix: str) -> str:
        return f"{organization_id}-{index_type}-{suffix}"
