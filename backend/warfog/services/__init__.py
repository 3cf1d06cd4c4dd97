"""Core game services: rating, combat, matchmaking, turns, settlement, sweeps.

Routes and socket handlers call into this package; nothing here knows about
HTTP. Every function expects an active application context.
"""
