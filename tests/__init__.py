"""
Tests package - Unit test suite for the PKI operator.

Contains:
- unit/: Unit tests for individual components
"""
