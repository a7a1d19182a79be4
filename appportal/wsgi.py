import logging
import sys
from pathlib import Path

if __package__ in (None, ""):
    project_root = str(Path(__file__).resolve().parent.parent)
    if project_root not in sys.path:
        sys.path.insert(0, project_root)

from appportal.app import ServiceContext, create_app
from appportal.config import Settings

settings = Settings.from_env()
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
app = create_app(ServiceContext.from_settings(settings))

if __name__ == "__main__":
    logging.getLogger(__name__).info("server running on port %s", settings.port)
    app.run(host=settings.host, port=settings.port)
