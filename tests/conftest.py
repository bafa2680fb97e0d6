"""
Test configuration

The service reads its settings when `service` is first imported, so the
defaults for the test run are set here, before any test module imports it.
"""
import os

os.environ.setdefault("DATABASE_URI", "sqlite:///:memory:")
os.environ.setdefault("SHOPIFY_API_KEY", "test-api-key")
os.environ.setdefault("SHOPIFY_API_SECRET", "test-api-secret")
