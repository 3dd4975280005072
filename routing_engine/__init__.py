"""
Routing Engine Module

Trip graph data model, graph building with reachability pruning and the
itinerary search.
"""
