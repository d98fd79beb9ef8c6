"""
Documents module: issuance and verification of owner-bound documents.

Pipeline:
- Issue: hash -> blob store -> ledger anchor -> metadata record -> notify
- Verify: filename -> owner id -> hash -> owner's records -> exact hash match

Hard constraints:
- Only byte-exact hash equality counts as a match
- Ledger writes are never retried automatically
- Records are append-only (no dedup, no update, no delete)
"""
