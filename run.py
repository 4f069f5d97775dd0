import uvicorn
import os

from tableside.config import settings

if __name__ == "__main__":
    # Single worker: order timeout timers live in this process
    port = int(os.environ.get("PORT", 8000))
    uvicorn.run(
        "tableside.main:app",
        host="0.0.0.0",
        port=port,
        reload=not settings.is_production,
        log_level=settings.LOG_LEVEL.lower(),
    )
