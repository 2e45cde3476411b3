"""
Advent calendar web application.

A daily calendar of hidden messages behind Google sign-in, with server-side
sessions and admin impersonation.
"""

__version__ = "1.0.0"
