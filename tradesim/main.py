from fastapi import FastAPI
import logging

from .api.routes import router as bots_router
from .config import get_settings
from .services.bot_manager import create_bot_manager

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
)

app = FastAPI(title="Trading Bot Simulator")
app.state.bot_manager = create_bot_manager(settings)

app.include_router(bots_router, prefix="/api")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("tradesim.main:app", host="0.0.0.0", port=8000, reload=True)
