"""Test package for the evidence pipeline.

Test Structure:
- conftest.py: Shared fixtures and test doubles
- test_database.py: Tests for repositories and record invariants
- test_extractors.py: Tests for native text, OCR providers and the claim suggester
- test_concurrency.py: Tests for the concurrency limiter
- test_text_engine.py: Tests for the dual-provider text engine
- test_extraction_scheduler.py: Tests for extraction job scheduling
- test_claims_scheduler.py: Tests for debounced claim suggestion
- test_citation_ranker.py: Tests for citation auto-attach
- test_template_compiler.py: Tests for preflight and compilation
- test_pipeline.py: End-to-end tests through the pipeline service

Usage:
    Run all tests: pytest
    Run specific module: pytest tests/test_text_engine.py
"""
