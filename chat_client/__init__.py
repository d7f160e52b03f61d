"""
Terminal chat client built on the e2ee package.
"""
