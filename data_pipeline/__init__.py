"""
Data Pipeline Module

Provider API clients, query validation, the message stream and shared utilities.
"""
