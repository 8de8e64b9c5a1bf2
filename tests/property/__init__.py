"""Property-based tests using Hypothesis.

These tests use generative testing to explore edge cases:
- URL normalization with arbitrary query strings
- Content hash determinism
- Link uniqueness under arbitrary add/remove sequences

To run property tests:
    pytest tests/property/ -v --hypothesis-show-statistics

Requires:
    hypothesis>=6.100.0
"""
