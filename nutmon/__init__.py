"""
nutmon: status monitoring for UPS devices served by Network UPS Tools.
"""

__version__ = "0.1.0"
