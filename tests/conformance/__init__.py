"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the lending market.

The tests are organized by invariant:
1. conservation.py - Value conservation, escrow residue, forward-only status
2. atomicity.py - All-or-nothing operations
3. idempotency.py - Duplicate settlement and retried operations
4. fee_splits.py - Exact integer fee partitions

These tests use hypothesis for property-based testing.
"""
