"""
Tests Package - Unit and Integration Tests

Test structure:
- tests/conftest.py - Shared pytest fixtures (settings, managers, fake Redis, workbooks)
- tests/helpers.py - Polling helpers for asynchronous job completion
- tests/test_*.py - One module per component

Redis is replaced by fakeredis; workbooks are generated with openpyxl in tmp_path.
"""
