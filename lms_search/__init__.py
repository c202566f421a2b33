"""
LMS search indexing, query and analytics services
"""
