"""
identity_service package

This package contains the backend of the identity service.
It includes:

- FastAPI application (`main.py`) and its routers (`routes/`)
- SQLAlchemy models and database integration (`models.py`, `db.py`)
- Password hashing, tokens and the bearer dependency (`auth.py`)
- Identity operations (`user_manager.py`)
- Pydantic schemas (`schemas.py`)

Tests in this package exercise the service through FastAPI's TestClient.
"""
