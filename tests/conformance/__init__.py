"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the vesting ledger.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. test_unlock_properties.py - Monotone, bounded staircase with exact cliff and end boundaries
2. test_conservation.py - held_tokens and token supply balance after any operation sequence
3. test_atomicity.py - A failed token transfer leaves no trace
4. test_idempotency.py - Rejected operations change nothing, however often repeated
5. test_determinism.py - Same operations, same clock, same state

These tests use hypothesis for property-based testing. Shared strategies
live in strategies.py.
"""
