"""SocialSync realtime messaging and notification bridge."""

__version__ = "1.0.0"
