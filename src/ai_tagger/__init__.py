"""AI Tagger: describe photos and suggest keywords through interchangeable AI vision backends."""

__version__ = "0.1.0"
