"""Simulated stock trading league: quote collection, trading ledger and rankings."""
