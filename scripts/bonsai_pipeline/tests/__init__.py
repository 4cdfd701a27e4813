"""
Tests for the bonsai build pipeline.
"""
