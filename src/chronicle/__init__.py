"""Chronicle: turns inbox, note and calendar signals into project records."""

__version__ = "0.1.0"
