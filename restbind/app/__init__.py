"""
restbind application layer: FastAPI factory, error handlers, dependencies.
"""
