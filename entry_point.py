import uvicorn

from conciliacao.config import get_settings
from conciliacao.main import app

if __name__ == "__main__":
    settings = get_settings()
    uvicorn.run(app, host=settings.host, port=settings.port)
