from fastapi import FastAPI
from dotenv import load_dotenv

from kubeprov import __version__
from kubeprov.api.middleware import AuthMiddleware
from kubeprov.api.routes import phases, state, verify
from kubeprov.logging import setup_logger

load_dotenv()
logger = setup_logger("kubeprov.api")

app = FastAPI(title="kubeprov", version=__version__)
app.add_middleware(AuthMiddleware)

app.include_router(state.router)
app.include_router(phases.router)
app.include_router(verify.router)


@app.get("/health")
def health():
    return {"status": "ok", "version": __version__}
