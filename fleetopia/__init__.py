"""Fleetopia dispatch service: cargo matching, vehicle assignment and offer negotiation."""
