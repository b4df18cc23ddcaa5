"""
Deployment entry point for the Controle de Hidrômetros API
"""
import os

from app.main import app

handler = app

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.environ.get("PORT", 8000)))
