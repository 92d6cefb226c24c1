"""Unit tests for http-mox."""
