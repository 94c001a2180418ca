"""
phoneagent: autonomous phone control over adb.

screenshot → vision model → parsed action → root shell → repeat
"""

__version__ = "0.3.0"
