"""
Club posts module.

Posts, threaded comments, and likes on both.
"""
