"""
IRIS Agent

Command and intent resolution engine behind the IRIS terminal assistant.
Turns free-form operator text into booking operations using fast pattern
matching, a remote AI intent parser, or direct dispatch.
"""

# Logging is configured at app entry point via iris_agent/logging_utils.py
# No need to configure logging here.

__version__ = "0.1.0"
__author__ = "IRIS Agent"
__description__ = "Hybrid command/intent resolution engine for room booking terminals"
