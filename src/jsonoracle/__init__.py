"""JSON Oracle: multi-model analysis of JSON payloads for registered integrations."""

__version__ = "0.1.0"
