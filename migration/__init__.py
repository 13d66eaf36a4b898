"""
Storage-migration consistency layer.

This package provides the pieces used to move record types off the legacy
Firestore document store onto the Postgres relational store while the
application keeps serving traffic: stable identity derivation, backfill
jobs, a primary/fallback read router and parity validation.
"""
