"""
HTTP Input Plugin.

This plugin provides the REST API for editing the reconciler and streaming logs.
"""

from plugins.inputs.http.api import HTTPInputPlugin

__all__ = ["HTTPInputPlugin"]
