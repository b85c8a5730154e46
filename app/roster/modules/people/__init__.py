"""
People module: person pages, role history and cleanup of stale records.
"""
