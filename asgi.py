"""
asgi.py -- Application assembly for EdgeGate.

api/main.py owns the app, middleware and the gate's health endpoint;
web/routes.py owns the challenge, verification and catch-all proxy routes.
The web router is mounted here, last, so its catch-all route never shadows
anything registered in api/main.py.

Run with:  uvicorn asgi:app
           python main.py serve
"""

from api.main import app
from web.routes import router as web_router

app.include_router(web_router, tags=["Gate"])
