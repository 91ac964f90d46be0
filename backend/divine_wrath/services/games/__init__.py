"""Game domain services: rooms, claims, verification, attacks, scoring, rounds.

This package contains the per-room game engine, imported by Socket.IO
handlers and HTTP routes, keeping transport concerns separated from core
game mechanics.
"""
