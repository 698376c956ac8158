"""Voting aggregation node: vote submissions, zonal totals, peer broadcast."""
