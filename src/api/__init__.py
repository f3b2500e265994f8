"""FastAPI application module for SignalRank.

This module contains the FastAPI application, the engine runtime shared by
the routes, and the ranking, feedback and trending endpoints.
"""
