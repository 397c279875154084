"""NoteSync — offline-first capture of contact notes.

Notes submitted while the remote store is unreachable are kept in a durable
local queue and replayed once connectivity returns.
"""
