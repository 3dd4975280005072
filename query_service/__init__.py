"""
Query Service Module

Consumes trip queries from the message stream, runs the planner and
publishes the ranked answers.
"""
