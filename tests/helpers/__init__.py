"""
Test helper utilities for Fracture testing.

This module provides reusable utilities for:
- Generating synthetic channel signals
- Driving an engine into intervention and crisis states
"""
