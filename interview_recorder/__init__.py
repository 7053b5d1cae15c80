"""Sequential interview clip recorder with an offline analysis pipeline."""

__version__ = "0.1.0"
