"""Challenge domain services: game status lookup, lifecycle and sync.

This package contains the domain logic that HTTP routes and socket
handlers call into, keeping transport concerns separated from the
challenge state machine.
"""
