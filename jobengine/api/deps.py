from fastapi import Depends, Request

from jobengine.engine import JobEngine


def get_engine(request: Request) -> JobEngine:
    """Dependency injection function for the running job engine."""
    return request.app.state.engine


# Convenience type alias for dependency injection
EngineDep = Depends(get_engine)
