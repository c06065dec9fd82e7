"""
Donation services.

- lifecycle: top-level status machine and the operations callers use
- candidacy: interest registrations against open donations
- progress: bilateral confirmation ledger and status derivation
- history: field-level edit history of donations and profiles
- profiles: profile updates and per-user statistics
"""
