"""
Test suite for the replay engine.

Focus areas:
- Canonical serialization and snapshot codec determinism
- Applicator purity and update policies
- Replay correctness against snapshots and delta tails
- Delta log and snapshot store integrity
"""
