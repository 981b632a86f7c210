"""
Shared models, configuration, exceptions and logging
"""
