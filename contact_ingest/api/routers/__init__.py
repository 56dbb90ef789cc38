"""
FastAPI routers for the contact import API.
"""
