"""
Journey Optimizer Module

Plans trip queries end to end and ranks/renders the resulting itineraries.
"""
