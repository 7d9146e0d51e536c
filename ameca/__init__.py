"""A Discord moderation bot with automod, message logging, AFK notices, warnings and reaction roles."""

__version__ = "0.1.0"