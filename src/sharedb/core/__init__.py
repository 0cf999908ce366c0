"""Core configuration, exceptions, and instrumentation for sharedb."""
