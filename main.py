import os

import uvicorn

from render_bench.logging_config import setup_logging
from render_bench.settings import get_settings


def main() -> None:
    settings = get_settings()
    setup_logging(settings.log_level, settings.json_logs)
    port = int(os.getenv("PORT", 8765))
    uvicorn.run("render_bench.api:app", host="0.0.0.0", port=port, reload=False)


if __name__ == "__main__":
    main()
