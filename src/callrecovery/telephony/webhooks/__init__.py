"""
Calling provider webhooks package.

Keep import side-effect free.
"""
