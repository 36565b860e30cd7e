"""
Test suite for Catalog Mapper.

Run all tests: pytest
Run unit tests only: pytest tests/unit/
Run specific file: pytest tests/unit/test_session_service.py -v
"""
