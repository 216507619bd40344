"""
chatrelay webhook application.
"""
