"""
Application Layer

The FastAPI application, its request pipeline and the repository boundary.
"""
