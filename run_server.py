"""Convenience launcher so you can just: python run_server.py
Resolves import path confusion (ModuleNotFoundError: app)
"""
import os

from backend.app.main import app  # type: ignore

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=os.getenv("HOST", "127.0.0.1"), port=int(os.getenv("PORT", "8000")))
