"""zonectl: HVAC mode control for Home Assistant climate zones."""

__version__ = "0.1.0"
