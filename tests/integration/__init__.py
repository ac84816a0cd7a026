"""
Integration Tests Package

Scenario tests that drive the full engine through scripted inference.

TEST AXIOMS:
=============
1. Inference failure never blocks an incident from being recorded
2. Identity is disclosed only for SOS incidents
3. Every lifecycle change is visible on the change feed
"""
