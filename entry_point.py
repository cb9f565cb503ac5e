import uvicorn

from cashapp.config import get_settings
from cashapp.main import app

if __name__ == "__main__":
    settings = get_settings()
    uvicorn.run(app, host=settings.host, port=settings.port)
