"""
Search module for LMS search
Backend client, document transformation, query building, indexing and reindexing
"""
