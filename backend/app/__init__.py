"""
nextmic Backend Application Package

This package contains the FastAPI backend for the nextmic speaker
opportunity pipeline, including:

- main.py: FastAPI application and router wiring
- pipeline_engine.py: in-memory kanban board and stage transitions
- score_store.py: Supabase-backed opportunity score store
- follow_up_service.py: follow-up reminder generation
"""

__version__ = "1.0.0"
