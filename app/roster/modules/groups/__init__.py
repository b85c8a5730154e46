"""
Groups module: hierarchy helpers, group pages and group settings.
"""
