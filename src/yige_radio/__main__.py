"""Entry point for running as a module."""
from yige_radio.api import app
from yige_radio.config import env_int
import uvicorn
import os

if __name__ == "__main__":
    port = env_int("PORT", 8000)
    uvicorn.run(app, host=os.getenv("HOST", "0.0.0.0"), port=port)
